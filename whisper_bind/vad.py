"""Standalone voice activity detection.

The VAD subsystem mirrors the engine's API partition: a context that owns
the loaded VAD model, and a segments object that owns the flat array of
(start, end) pairs produced by one pipeline run. It shares nothing with
the transcription side.

Example:
    >>> with WhisperVadContext("ggml-silero-v5.1.2.bin") as vad:
    ...     for seg in vad.segments_from_samples(WhisperVadParams(), samples):
    ...         print(f"speech from {seg.start / 100:.2f}s to {seg.end / 100:.2f}s")
"""

import logging
import os
import threading
import weakref
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from . import _native
from .data_models import WhisperVadSegment
from .errors import GenericError, NullPointerError
from .utilities import float_buffer

logger = logging.getLogger(__name__)

FLOAT32_MAX = float(np.finfo(np.float32).max)


@dataclass
class WhisperVadParams:
    """Tuning for the speech segmentation step.

    Attributes:
        threshold: Probability above which a frame counts as speech
        min_speech_duration_ms: Shorter speech segments are discarded
        min_silence_duration_ms: Silence must last this long to end a segment
        max_speech_duration_s: Longer segments are split at silence points
        speech_pad_ms: Padding added before and after each segment
        samples_overlap: Seconds of audio each segment extends into the next
    """
    threshold: float = 0.5
    min_speech_duration_ms: int = 250
    min_silence_duration_ms: int = 100
    max_speech_duration_s: float = FLOAT32_MAX
    speech_pad_ms: int = 30
    samples_overlap: float = 0.1

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [0.0, 1.0], got {self.threshold}")
        for name in ("min_speech_duration_ms", "min_silence_duration_ms", "speech_pad_ms"):
            value = getattr(self, name)
            if not isinstance(value, int):
                raise TypeError(f"{name} must be int, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.max_speech_duration_s <= 0:
            raise ValueError(
                f"max_speech_duration_s must be positive, got {self.max_speech_duration_s}"
            )
        if self.samples_overlap < 0:
            raise ValueError(
                f"samples_overlap must be non-negative, got {self.samples_overlap}"
            )

    def to_struct(self) -> _native.WhisperVadParamsStruct:
        return _native.WhisperVadParamsStruct(
            threshold=self.threshold,
            min_speech_duration_ms=self.min_speech_duration_ms,
            min_silence_duration_ms=self.min_silence_duration_ms,
            max_speech_duration_s=self.max_speech_duration_s,
            speech_pad_ms=self.speech_pad_ms,
            samples_overlap=self.samples_overlap,
        )


@dataclass
class WhisperVadContextParams:
    """Parameters used when loading a VAD model.

    Attributes:
        n_threads: Threads used for processing
        use_gpu: Run the VAD model on a GPU backend if available
        gpu_device: GPU device index used when use_gpu is set
    """
    n_threads: int = 4
    use_gpu: bool = False
    gpu_device: int = 0

    def __post_init__(self):
        if not isinstance(self.n_threads, int):
            raise TypeError(f"n_threads must be int, got {type(self.n_threads).__name__}")
        if self.n_threads < 1:
            raise ValueError(f"n_threads must be positive integer, got {self.n_threads}")
        if self.gpu_device < 0:
            raise ValueError(f"gpu_device must be non-negative, got {self.gpu_device}")

    def to_struct(self) -> _native.WhisperVadContextParamsStruct:
        return _native.WhisperVadContextParamsStruct(
            n_threads=self.n_threads,
            use_gpu=self.use_gpu,
            gpu_device=self.gpu_device,
        )


def _free_vad(lib, ptr) -> None:
    logger.debug("Freeing VAD context")
    lib.whisper_vad_free(ptr)


def _free_segments(lib, ptr) -> None:
    lib.whisper_vad_free_segments(ptr)


class WhisperVadContext:
    """Owns a loaded VAD model.

    Every pipeline call mutates buffers inside the context, so calls are
    serialised with a lock. The context is freed once, by close(), by
    leaving a with-block, or when the object is garbage collected.
    """

    def __init__(self, model_path, params: Optional[WhisperVadContextParams] = None, lib=None):
        """Load a VAD model from disk.

        Args:
            model_path: Path to a ggml VAD model (e.g. Silero)
            params: Loading parameters (default: WhisperVadContextParams())
            lib: Engine library (default: the active library)

        Raises:
            NullPointerError: If the engine fails to load the model
        """
        if params is None:
            params = WhisperVadContextParams()
        path = os.fspath(model_path)
        encoded = path.encode("utf-8")
        if b"\0" in encoded:
            raise ValueError("model_path must not contain null bytes")

        self._lib = lib if lib is not None else _native.get_library()
        self._lock = threading.RLock()

        logger.info(f"Loading VAD model from '{path}'")
        ptr = self._lib.whisper_vad_init_from_file_with_params(encoded, params.to_struct())
        if not ptr:
            raise NullPointerError(f"failed to load VAD model from '{path}'")
        self._ptr = ptr
        self._finalizer = weakref.finalize(self, _free_vad, self._lib, ptr)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def _handle(self):
        if not self._finalizer.alive:
            raise NullPointerError("VAD context has been freed")
        return self._ptr

    def close(self) -> None:
        """Free the VAD model. Safe to call more than once."""
        with self._lock:
            self._finalizer()

    def __enter__(self) -> "WhisperVadContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def detect_speech(self, samples) -> None:
        """Compute speech probabilities for samples.

        Call segments_from_probabilities() afterwards to finish the pipeline.

        Raises:
            GenericError: With code -1 if the engine reports a failure
        """
        array, ptr = float_buffer(samples)
        with self._lock:
            ok = self._lib.whisper_vad_detect_speech(self._handle(), ptr, len(array))
        if not ok:
            raise GenericError(-1)

    def n_probs(self) -> int:
        return self._lib.whisper_vad_n_probs(self._handle())

    def probabilities(self) -> np.ndarray:
        """Per-frame speech probabilities from the last detect_speech() call.

        Returns a copy, so the array stays valid after the context is
        reused or freed.
        """
        with self._lock:
            handle = self._handle()
            count = self._lib.whisper_vad_n_probs(handle)
            ptr = self._lib.whisper_vad_probs(handle)
            if count <= 0 or not ptr:
                return np.zeros(0, dtype=np.float32)
            return np.ctypeslib.as_array(ptr, shape=(count,)).copy()

    def segments_from_probabilities(self, params: WhisperVadParams) -> "WhisperVadSegments":
        """Turn the probabilities of the last detect_speech() into segments.

        Raises:
            NullPointerError: If the engine returns no segments object
        """
        with self._lock:
            ptr = self._lib.whisper_vad_segments_from_probs(self._handle(), params.to_struct())
        if not ptr:
            raise NullPointerError("engine returned no VAD segments")
        return WhisperVadSegments(self._lib, ptr)

    def segments_from_samples(self, params: WhisperVadParams, samples) -> "WhisperVadSegments":
        """Run the whole VAD pipeline over samples.

        Args:
            params: Segmentation parameters
            samples: Mono 16 kHz float32 PCM

        Raises:
            NullPointerError: If the engine returns no segments object
        """
        array, ptr = float_buffer(samples)
        with self._lock:
            seg_ptr = self._lib.whisper_vad_segments_from_samples(
                self._handle(), params.to_struct(), ptr, len(array)
            )
        if not seg_ptr:
            raise NullPointerError("engine returned no VAD segments")
        segments = WhisperVadSegments(self._lib, seg_ptr)
        logger.debug(f"VAD found {segments.num_segments()} speech segments")
        return segments


class WhisperVadSegments:
    """Owns the engine-allocated array of speech segments.

    Indexed getters are bounds-checked against the count cached at
    construction. Iterating advances an internal cursor, so the object can
    be iterated once; get_segment() can be used any number of times.
    """

    def __init__(self, lib, ptr):
        self._lib = lib
        self._ptr = ptr
        self._segment_count = lib.whisper_vad_segments_n_segments(ptr)
        self._iter_idx = 0
        self._finalizer = weakref.finalize(self, _free_segments, lib, ptr)

    def _handle(self):
        if not self._finalizer.alive:
            raise NullPointerError("VAD segments have been freed")
        return self._ptr

    def close(self) -> None:
        self._finalizer()

    def __enter__(self) -> "WhisperVadSegments":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def num_segments(self) -> int:
        return self._segment_count

    def __len__(self) -> int:
        return self._segment_count

    def index_in_bounds(self, idx: int) -> bool:
        return 0 <= idx < self._segment_count

    def get_segment_start_timestamp(self, idx: int) -> Optional[float]:
        """Start of segment idx in centiseconds, or None if out of bounds."""
        if not self.index_in_bounds(idx):
            return None
        return self._lib.whisper_vad_segments_get_segment_t0(self._handle(), idx)

    def get_segment_end_timestamp(self, idx: int) -> Optional[float]:
        """End of segment idx in centiseconds, or None if out of bounds."""
        if not self.index_in_bounds(idx):
            return None
        return self._lib.whisper_vad_segments_get_segment_t1(self._handle(), idx)

    def get_segment(self, idx: int) -> Optional[WhisperVadSegment]:
        start = self.get_segment_start_timestamp(idx)
        end = self.get_segment_end_timestamp(idx)
        if start is None or end is None:
            return None
        return WhisperVadSegment(start=start, end=end)

    def __iter__(self) -> Iterator[WhisperVadSegment]:
        return self

    def __next__(self) -> WhisperVadSegment:
        segment = self.get_segment(self._iter_idx)
        if segment is None:
            raise StopIteration
        self._iter_idx += 1
        return segment

    def __repr__(self) -> str:
        return f"WhisperVadSegments(num_segments={self._segment_count})"
