"""Basic usage example for whisper-bind.

This example demonstrates:
1. Loading a model and creating a decoding state
2. Transcribing audio with beam search
3. Reading segments, tokens and timestamps
4. Sharing one model between several states
"""

import numpy as np
import soundfile as sf

from whisper_bind import (
    BeamSearch,
    FullParams,
    WhisperContext,
    WhisperError,
    convert_integer_to_float_audio,
    install_logging_hooks,
)

# Replace with your actual model and audio paths
model_path = "ggml-tiny.bin"
audio_path = "jfk.wav"  # mono, 16 kHz

# Send whisper.cpp's own output through Python logging instead of stderr
install_logging_hooks()

# =============================================================================
# Example 1: Basic Transcription
# =============================================================================
print("=" * 70)
print("Example 1: Basic Transcription")
print("=" * 70)

try:
    pcm, _ = sf.read(audio_path, dtype="int16")
    samples = convert_integer_to_float_audio(pcm, np.zeros(len(pcm), dtype=np.float32))

    ctx = WhisperContext(model_path)
    state = ctx.create_state()

    # - BeamSearch: 5 beams, patience -1.0 (the engine ignores patience)
    # - language: "en", or None to let the engine detect it
    params = FullParams(BeamSearch(beam_size=5, patience=-1.0))
    params.set_language("en")
    params.set_print_progress(False)
    params.set_print_realtime(False)
    params.set_print_timestamps(False)

    state.full(params, samples)

    # Timestamps are in centiseconds
    print("\nTranscription:")
    print("-" * 70)
    for segment in state:
        start = segment.start_timestamp() / 100
        end = segment.end_timestamp() / 100
        print(f"[{start:6.2f}s - {end:6.2f}s] {segment}")

except sf.LibsndfileError:
    print(f"Cannot read audio file '{audio_path}'. Please provide a valid audio file.")
    raise SystemExit(1)
except WhisperError as e:
    print(f"Error during transcription: {e}")
    raise SystemExit(1)

# =============================================================================
# Example 2: Tokens
# =============================================================================
print("\n" + "=" * 70)
print("Example 2: Tokens of the first segment")
print("=" * 70)

first = state.get_segment(0)
if first is not None:
    for token in first:
        data = token.token_data()
        print(f"  id={token.token_id():>6} p={token.token_probability():.3f} "
              f"t0={data.t0:>5} t1={data.t1:>5} text={token.to_str_lossy()!r}")

# =============================================================================
# Example 3: One model, several states
# =============================================================================
print("\n" + "=" * 70)
print("Example 3: One model, several states")
print("=" * 70)

# Each state holds its own reference to the model; the model is freed
# when the context and every state have been closed.
second_state = ctx.create_state()
second_state.full(params, samples)
ctx.close()

print(f"First state:  {state.full_n_segments()} segment(s)")
print(f"Second state: {second_state.full_n_segments()} segment(s)")

state.close()
second_state.close()
