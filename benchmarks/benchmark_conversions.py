"""Benchmark the audio conversion utilities.

Times convert_integer_to_float_audio and convert_stereo_to_mono_audio on
random input. Does not need libwhisper or a model.
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from whisper_bind import convert_integer_to_float_audio, convert_stereo_to_mono_audio


def time_call(func, num_runs: int):
    """Run func num_runs times after one warm-up call.

    Returns:
        (mean, std) of the run times in seconds
    """
    func()
    run_times = []
    for _ in range(num_runs):
        start_time = time.perf_counter()
        func()
        run_times.append(time.perf_counter() - start_time)
    return np.mean(run_times), np.std(run_times)


def main():
    parser = argparse.ArgumentParser(description="Benchmark audio conversion utilities")
    parser.add_argument(
        "--samples",
        type=int,
        default=1_000_000,
        help="Number of input samples (default: 1000000)",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=20,
        help="Number of timed runs (default: 20)",
    )
    args = parser.parse_args()

    n = args.samples - args.samples % 2
    rng = np.random.default_rng(0)
    int_samples = rng.integers(-32768, 32768, size=n, dtype=np.int16)
    stereo_samples = rng.uniform(-1.0, 1.0, size=n).astype(np.float32)
    float_output = np.zeros(n, dtype=np.float32)
    mono_output = np.zeros(n // 2, dtype=np.float32)

    print("whisper-bind Conversion Benchmark")
    print(f"Samples: {n}")
    print(f"Runs: {args.runs}")
    print(f"\n{'Conversion':<24} {'Time (ms)':<20} {'Samples/s':<15}")
    print("-" * 60)

    benchmarks = [
        ("int16 -> float32", lambda: convert_integer_to_float_audio(int_samples, float_output)),
        ("stereo -> mono", lambda: convert_stereo_to_mono_audio(stereo_samples, mono_output)),
    ]
    for name, func in benchmarks:
        mean, std = time_call(func, args.runs)
        print(f"{name:<24} {mean * 1000:>7.3f} ± {std * 1000:<8.3f} {n / mean:>14.3e}")


if __name__ == "__main__":
    main()
