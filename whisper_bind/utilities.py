"""Audio conversion utilities.

Two small helpers for getting audio into the format the engine wants
(mono float32 PCM in [-1, 1]). Both write into a caller-supplied output
array and leave it untouched when the lengths do not line up.
"""

import ctypes
from typing import Any, Tuple

import numpy as np

from ._native import check_length
from .errors import HalfSampleMissing, InputOutputLengthMismatch


def _as_1d(samples, dtype, name: str) -> np.ndarray:
    array = np.ascontiguousarray(samples, dtype=dtype)
    if array.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional, got shape {array.shape}")
    return array


def _check_output(output: np.ndarray) -> None:
    if not isinstance(output, np.ndarray):
        raise TypeError(f"output must be np.ndarray, got {type(output).__name__}")
    if output.ndim != 1:
        raise ValueError(f"output must be 1-dimensional, got shape {output.shape}")


def float_buffer(samples, name: str = "samples") -> Tuple[np.ndarray, Any]:
    """Prepare a float32 buffer for the engine.

    Returns the contiguous array (which the caller must keep alive for the
    duration of the call) and a float pointer into it.
    """
    array = _as_1d(samples, np.float32, name)
    check_length(len(array), name)
    return array, array.ctypes.data_as(ctypes.POINTER(ctypes.c_float))


def token_buffer(tokens, name: str = "tokens") -> Tuple[np.ndarray, Any]:
    """Prepare an int32 token id buffer for the engine."""
    array = _as_1d(tokens, np.int32, name)
    check_length(len(array), name)
    return array, array.ctypes.data_as(ctypes.POINTER(ctypes.c_int32))


def convert_integer_to_float_audio(samples, output: np.ndarray) -> np.ndarray:
    """Convert 16-bit integer PCM samples to 32-bit float samples.

    Each sample is divided by 32768.0.

    Args:
        samples: int16 samples (array or sequence)
        output: float32 array of the same length to write into

    Returns:
        The output array

    Raises:
        InputOutputLengthMismatch: If the lengths differ

    Example:
        >>> samples = np.zeros(1024, dtype=np.int16)
        >>> output = np.zeros(1024, dtype=np.float32)
        >>> convert_integer_to_float_audio(samples, output)
    """
    samples = _as_1d(samples, np.int16, "samples")
    _check_output(output)
    if len(samples) != len(output):
        raise InputOutputLengthMismatch(len(samples), len(output))

    output[:] = samples.astype(np.float32) / np.float32(32768.0)
    return output


def convert_stereo_to_mono_audio(samples, output: np.ndarray) -> np.ndarray:
    """Average interleaved stereo float samples into mono.

    Args:
        samples: Interleaved (L, R, L, R, ...) float32 samples
        output: float32 array of length len(samples) // 2 to write into

    Returns:
        The output array

    Raises:
        HalfSampleMissing: If samples has an odd length
        InputOutputLengthMismatch: If output is not half the input length;
            input_len is reported in stereo frames
    """
    samples = _as_1d(samples, np.float32, "samples")
    _check_output(output)
    if len(samples) % 2 != 0:
        raise HalfSampleMissing(len(samples))
    frames = len(samples) // 2
    if len(output) != frames:
        raise InputOutputLengthMismatch(frames, len(output))

    output[:] = (samples[0::2] + samples[1::2]) / np.float32(2.0)
    return output
