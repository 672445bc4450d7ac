"""Transcribe an audio file and write transcript.txt.

Usage:
    python audio_transcription.py MODEL AUDIO [--dtw PRESET]

The audio must be 16 kHz; stereo input is mixed down to mono. Needs the
soundfile package (pip install whisper-bind[examples]).
With --dtw, token-level DTW timestamps are printed as well.
"""

import argparse
import sys

import numpy as np
import soundfile as sf

from whisper_bind import (
    BeamSearch,
    DtwDisabled,
    DtwModelPreset,
    DtwPreset,
    FullParams,
    WhisperContext,
    WhisperContextParameters,
    convert_integer_to_float_audio,
    convert_stereo_to_mono_audio,
)


def read_audio(path: str) -> np.ndarray:
    """Read a 16 kHz audio file as mono float32 samples."""
    pcm, sr = sf.read(path, dtype="int16", always_2d=True)
    if sr != 16000:
        raise ValueError(f"expected 16 kHz audio, got {sr} Hz")
    if pcm.shape[1] not in (1, 2):
        raise ValueError(f"expected mono or stereo audio, got {pcm.shape[1]} channels")

    # Interleaved int16 -> float32, then mix stereo frames down to mono
    interleaved = pcm.reshape(-1)
    samples = convert_integer_to_float_audio(
        interleaved, np.zeros(len(interleaved), dtype=np.float32)
    )
    if pcm.shape[1] == 2:
        samples = convert_stereo_to_mono_audio(samples, np.zeros(len(pcm), dtype=np.float32))
    return samples


def main():
    parser = argparse.ArgumentParser(description="Transcribe an audio file")
    parser.add_argument("model", help="Path to a ggml Whisper model")
    parser.add_argument("audio", help="Path to a 16 kHz audio file (WAV, FLAC, ...)")
    parser.add_argument(
        "--dtw",
        choices=[p.name.lower() for p in DtwModelPreset],
        help="Enable DTW token timestamps with the given model preset",
    )
    parser.add_argument("--language", default="en", help="Spoken language (default: en)")
    parser.add_argument("--output", default="transcript.txt", help="Transcript file")
    args = parser.parse_args()

    try:
        samples = read_audio(args.audio)
    except (OSError, ValueError, sf.LibsndfileError) as e:
        print(f"Cannot read '{args.audio}': {e}")
        sys.exit(1)

    dtw_mode = DtwPreset(DtwModelPreset[args.dtw.upper()]) if args.dtw else DtwDisabled()
    context_params = WhisperContextParameters(dtw_mode=dtw_mode)

    params = FullParams(BeamSearch(beam_size=5, patience=-1.0))
    params.set_language(args.language)
    params.set_token_timestamps(args.dtw is not None)
    params.set_print_progress(False)
    params.set_print_realtime(False)
    params.set_print_timestamps(False)
    params.set_progress_callback(lambda progress: print(f"\rProgress: {progress:3d}%", end=""))

    with WhisperContext(args.model, context_params) as ctx:
        with ctx.create_state() as state:
            state.full(params, samples)
            print()

            with open(args.output, "w", encoding="utf-8") as f:
                for segment in state:
                    line = (
                        f"[{segment.start_timestamp()} - {segment.end_timestamp()}]: "
                        f"{segment.to_str_lossy()}"
                    )
                    print(line)
                    f.write(line + "\n")

                    if args.dtw:
                        for token in segment:
                            print(f"    {token.token_data().t_dtw:>6} {token.to_str_lossy()!r}")

    print(f"\nTranscript written to {args.output}")


if __name__ == "__main__":
    main()
