"""Benchmark transcription speed across thread counts.

Needs libwhisper and a model file. Audio is synthetic, so the transcript
itself is meaningless; only the timings matter.
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from whisper_bind import FullParams, WhisperContext, WhisperError


def generate_test_audio(duration: float, sample_rate: int = 16000) -> np.ndarray:
    """Generate synthetic audio for testing.

    Args:
        duration: Audio duration in seconds
        sample_rate: Sample rate in Hz

    Returns:
        Audio samples as numpy array
    """
    t = np.linspace(0, duration, int(duration * sample_rate), endpoint=False)
    audio = 0.1 * np.sin(2 * np.pi * 220 * t) + 0.01 * np.random.randn(len(t))
    return audio.astype(np.float32)


def benchmark_threads(ctx: WhisperContext, threads: int, audio: np.ndarray, num_runs: int):
    """Benchmark full() with a specific thread count.

    Returns:
        Dictionary of results or None if failed
    """
    print(f"\nTesting threads={threads}...")
    params = FullParams()
    params.set_n_threads(threads)
    params.set_print_progress(False)
    params.set_print_realtime(False)
    params.set_print_timestamps(False)

    run_times = []
    with ctx.create_state() as state:
        for run in range(num_runs):
            start_time = time.time()
            try:
                state.full(params, audio)
            except WhisperError as e:
                print(f"  Run {run+1} failed: {e}")
                return None
            run_times.append(time.time() - start_time)

    duration = len(audio) / 16000
    avg_time = np.mean(run_times)
    result = {
        "threads": threads,
        "avg_time": avg_time,
        "std_time": np.std(run_times),
        "rtf": avg_time / duration,
    }
    print(f"  Avg time: {avg_time:.3f}s ± {result['std_time']:.3f}s")
    print(f"  RTF: {result['rtf']:.3f}")
    return result


def main():
    parser = argparse.ArgumentParser(description="Benchmark different thread counts")
    parser.add_argument("--model", type=str, required=True, help="Path to a ggml model")
    parser.add_argument(
        "--threads",
        type=int,
        nargs="+",
        default=[1, 2, 4, 8],
        help="Thread counts to test (default: 1 2 4 8)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=10.0,
        help="Audio duration in seconds (default: 10.0)",
    )
    parser.add_argument("--runs", type=int, default=3, help="Runs per thread count (default: 3)")
    args = parser.parse_args()

    print("whisper-bind Thread Count Benchmark")
    print(f"Model: {args.model}")
    print(f"Audio duration: {args.duration}s")
    print(f"Thread counts: {args.threads}")

    audio = generate_test_audio(args.duration)
    results = []
    with WhisperContext(args.model) as ctx:
        for threads in args.threads:
            result = benchmark_threads(ctx, threads, audio, args.runs)
            if result:
                results.append(result)

    if not results:
        print("\nNo successful results to summarize")
        return

    print(f"\n{'Threads':<10} {'Time (s)':<12} {'RTF':<12} {'Speedup':<10}")
    print("-" * 44)
    baseline_time = results[0]["avg_time"]
    for result in results:
        print(
            f"{result['threads']:<10} "
            f"{result['avg_time']:<12.3f} "
            f"{result['rtf']:<12.3f} "
            f"{baseline_time / result['avg_time']:.2f}x"
        )


if __name__ == "__main__":
    main()
