"""Find speech in a WAV file with a Silero VAD model.

Usage:
    python vad.py VAD_MODEL AUDIO
"""

import argparse

import numpy as np
import soundfile as sf

from whisper_bind import (
    WhisperVadContext,
    WhisperVadContextParams,
    WhisperVadParams,
    convert_integer_to_float_audio,
)


def main():
    parser = argparse.ArgumentParser(description="Detect speech segments")
    parser.add_argument("model", help="Path to a ggml Silero VAD model")
    parser.add_argument("audio", help="Path to a mono 16 kHz audio file")
    parser.add_argument("--threshold", type=float, default=0.5, help="Speech threshold")
    args = parser.parse_args()

    pcm, sr = sf.read(args.audio, dtype="int16", always_2d=False)
    if sr != 16000 or pcm.ndim != 1:
        parser.error(f"{args.audio} must be mono 16 kHz audio")
    samples = convert_integer_to_float_audio(pcm, np.zeros(len(pcm), dtype=np.float32))

    params = WhisperVadParams(threshold=args.threshold)
    with WhisperVadContext(args.model, WhisperVadContextParams(n_threads=4)) as vad:
        segments = vad.segments_from_samples(params, samples)
        print(f"Found {segments.num_segments()} speech segment(s)")
        for segment in segments:
            # VAD timestamps are in centiseconds
            print(f"  {segment.start / 100:7.2f}s - {segment.end / 100:7.2f}s")


if __name__ == "__main__":
    main()
