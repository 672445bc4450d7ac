"""Decoding states and the views over their results.

A WhisperState owns one engine whisper_state and a reference to the model
it was created from. WhisperSegment and WhisperToken are lightweight views
that name a result by index; they hold a strong reference to the state, so
the state outlives every view it produced. Closing a state explicitly
invalidates its views: any further engine query raises NullPointerError.
"""

import ctypes
import logging
import threading
import weakref
from typing import Iterator, List, Optional, Tuple

import numpy as np

from . import _native
from .context import ContextRef, decode_lossy, decode_strict
from .errors import (
    EVAL_ERRORS,
    FULL_ERRORS,
    MEL_ERRORS,
    SET_MEL_ERRORS,
    GenericError,
    NoSamples,
    NullPointerError,
    check_return,
    check_threads,
)
from .params import FullParams
from .utilities import float_buffer, token_buffer

logger = logging.getLogger(__name__)

# Fixed by the engine's mel front end.
MEL_HOP_SIZE = 160
N_MEL_BANDS = 80


def _free_state(lib, ptr, ref: ContextRef) -> None:
    logger.debug("Freeing whisper state")
    lib.whisper_free_state(ptr)
    ref.release()


class WhisperState:
    """Per-run decoding state bound to a shared model.

    Pipeline calls and result queries hold an internal lock, so a state
    may be handed between threads; several states over the same model can
    run concurrently. Obtain one with WhisperContext.create_state().
    """

    def __init__(self, ref: ContextRef, ptr):
        self._ref = ref
        self._ctx = ref.inner
        self._lib = self._ctx.lib
        self._ptr = ptr
        self._lock = threading.RLock()
        self._finalizer = weakref.finalize(self, _free_state, self._lib, ptr, ref)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    @property
    def ptr(self):
        """The raw engine handle.

        Raises:
            NullPointerError: If the state has been closed
        """
        if not self._finalizer.alive:
            raise NullPointerError("whisper state has been freed")
        return self._ptr

    def close(self) -> None:
        """Free the state and release its model reference. Idempotent."""
        with self._lock:
            self._finalizer()

    def _query(self, name: str, *args, with_context: bool = False):
        # Holding the lock keeps close() from freeing the handle mid-call.
        with self._lock:
            fn = getattr(self._lib, name)
            if with_context:
                return fn(self._ctx.ptr, self.ptr, *args)
            return fn(self.ptr, *args)

    def __enter__(self) -> "WhisperState":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- pipeline ---

    def pcm_to_mel(self, pcm, threads: int = 1) -> None:
        """Convert raw float32 PCM into a log mel spectrogram held by the state.

        Args:
            pcm: Mono 16 kHz float32 samples
            threads: Number of threads to use, at least 1

        Raises:
            InvalidThreadCount: If threads < 1
            UnableToCalculateSpectrogram: If the engine returns -1
            GenericError: For any other non-zero return
        """
        check_threads(threads)
        array, ptr = float_buffer(pcm, "pcm")
        with self._lock:
            ret = self._lib.whisper_pcm_to_mel_with_state(
                self._ctx.ptr, self.ptr, ptr, len(array), threads
            )
        check_return(ret, MEL_ERRORS)

    def set_mel(self, mel) -> None:
        """Provide a custom log mel spectrogram instead of calling pcm_to_mel().

        The frame count passed to the engine is (len(mel) // 160) * 2 at
        80 mel bands.

        Raises:
            InvalidMelBands: If the engine returns -1
            GenericError: For any other non-zero return
        """
        array, ptr = float_buffer(mel, "mel")
        n_len = (len(array) // MEL_HOP_SIZE) * 2
        with self._lock:
            ret = self._lib.whisper_set_mel_with_state(
                self._ctx.ptr, self.ptr, ptr, n_len, N_MEL_BANDS
            )
        check_return(ret, SET_MEL_ERRORS)

    def encode(self, offset: int = 0, threads: int = 1) -> None:
        """Run the encoder on the spectrogram stored in the state.

        Args:
            offset: Offset of the first spectrogram frame, usually 0
            threads: Number of threads to use, at least 1

        Raises:
            InvalidThreadCount: If threads < 1
            UnableToCalculateEvaluation: If the engine returns -1
        """
        check_threads(threads)
        with self._lock:
            ret = self._lib.whisper_encode_with_state(self._ctx.ptr, self.ptr, offset, threads)
        check_return(ret, EVAL_ERRORS)

    def decode(self, tokens, n_past: int = 0, threads: int = 1) -> None:
        """Run the decoder over tokens to get logits for the next token.

        Args:
            tokens: Token ids forming the decoder context
            n_past: Number of past tokens already in the KV cache
            threads: Number of threads to use, at least 1

        Raises:
            InvalidThreadCount: If threads < 1
            UnableToCalculateEvaluation: If the engine returns -1
        """
        check_threads(threads)
        array, ptr = token_buffer(tokens)
        with self._lock:
            ret = self._lib.whisper_decode_with_state(
                self._ctx.ptr, self.ptr, ptr, len(array), n_past, threads
            )
        check_return(ret, EVAL_ERRORS)

    def lang_detect(self, offset_ms: int = 0, threads: int = 1) -> Tuple[int, np.ndarray]:
        """Detect the spoken language from the stored spectrogram.

        Call pcm_to_mel() or set_mel() first.

        Returns:
            lang_id: Id of the most probable language
            probs: Probabilities for every language id, length lang_max_id + 1

        Raises:
            InvalidThreadCount: If threads < 1
            GenericError: If the engine returns a negative value
        """
        check_threads(threads)
        n_langs = self._lib.whisper_lang_max_id() + 1
        probs = np.zeros(n_langs, dtype=np.float32)
        with self._lock:
            ret = self._lib.whisper_lang_auto_detect_with_state(
                self._ctx.ptr,
                self.ptr,
                offset_ms,
                threads,
                probs.ctypes.data_as(ctypes.POINTER(ctypes.c_float)),
            )
        if ret < 0:
            raise GenericError(ret)
        return ret, probs

    def get_logits(self) -> np.ndarray:
        """Logits from the last decode() call, one per vocabulary entry.

        Returns a copy of the engine's buffer.

        Raises:
            NullPointerError: If the engine has no logits
        """
        with self._lock:
            ptr = self._lib.whisper_get_logits_from_state(self.ptr)
            if not ptr:
                raise NullPointerError("engine returned no logits")
            n_vocab = self.n_vocab()
            return np.ctypeslib.as_array(ptr, shape=(n_vocab,)).copy()

    def n_len(self) -> int:
        """Length of the stored mel spectrogram in frames."""
        return self._query("whisper_n_len_from_state")

    def n_vocab(self) -> int:
        return self._ctx.n_vocab()

    def full(self, params: FullParams, pcm) -> int:
        """Run the whole pipeline: PCM -> mel -> encoder -> decoder -> text.

        Args:
            params: Run configuration
            pcm: Mono 16 kHz float32 samples in [-1, 1]

        Returns:
            0 on success

        Raises:
            InvalidThreadCount: If the params ask for fewer than 1 thread
            NoSamples: If pcm is empty (the engine is not called)
            UnableToCalculateSpectrogram: If the engine returns -1
            FailedToEncode: If the engine returns 7
            FailedToDecode: If the engine returns 8
            GenericError: For any other non-zero return
        """
        if not isinstance(params, FullParams):
            raise TypeError(f"params must be FullParams, got {type(params).__name__}")
        check_threads(params.fp.n_threads)
        array, ptr = float_buffer(pcm, "pcm")
        if len(array) == 0:
            raise NoSamples()

        logger.debug(f"Running full pipeline over {len(array)} samples")
        n_errors = len(params.callback_errors)
        with self._lock:
            ret = self._lib.whisper_full_with_state(
                self._ctx.ptr, self.ptr, params.fp, ptr, len(array)
            )
        if len(params.callback_errors) > n_errors:
            logger.warning(
                f"{len(params.callback_errors) - n_errors} callback error(s) "
                "were suppressed during full()"
            )
        return check_return(ret, FULL_ERRORS)

    def full_n_segments(self) -> int:
        """Number of segments produced by the last full() run."""
        return self._query("whisper_full_n_segments_from_state")

    def full_lang_id_from_state(self) -> int:
        """Language id used by the last full() run."""
        return self._query("whisper_full_lang_id_from_state")

    # --- navigation ---

    def _segment_in_bounds(self, segment: int) -> bool:
        return 0 <= segment < self.full_n_segments()

    def get_segment(self, segment: int) -> Optional["WhisperSegment"]:
        """The segment at index segment, or None when out of bounds."""
        if not self._segment_in_bounds(segment):
            return None
        return WhisperSegment(self, segment)

    def get_segment_unchecked(self, segment: int) -> "WhisperSegment":
        """Like get_segment() but without the bounds check.

        The caller must guarantee 0 <= segment < full_n_segments(); the
        engine does not validate the index.
        """
        return WhisperSegment(self, segment)

    def as_iter(self) -> "WhisperStateSegmentIterator":
        """Iterate over all result segments in index order."""
        return WhisperStateSegmentIterator(self)

    def __iter__(self) -> "WhisperStateSegmentIterator":
        return self.as_iter()

    def __repr__(self) -> str:
        if self.closed:
            return "WhisperState(closed)"
        return f"WhisperState(n_segments={self.full_n_segments()})"


class WhisperStateSegmentIterator:
    """Cursor over a state's segments, stopping at the first index out of bounds."""

    def __init__(self, state: WhisperState):
        self._state = state
        self._current = 0

    def __iter__(self) -> "WhisperStateSegmentIterator":
        return self

    def __next__(self) -> "WhisperSegment":
        segment = self._state.get_segment(self._current)
        self._current += 1
        if segment is None:
            raise StopIteration
        return segment


class WhisperSegment:
    """A segment of the transcription produced by WhisperState.full().

    The token count is read once on construction and used as the bound
    for token indexing.
    """

    def __init__(self, state: WhisperState, segment_idx: int):
        self._state = state
        self._segment_idx = segment_idx
        self._token_count = state._query("whisper_full_n_tokens_from_state", segment_idx)

    @property
    def state(self) -> WhisperState:
        return self._state

    def segment_index(self) -> int:
        return self._segment_idx

    def start_timestamp(self) -> int:
        """Start time in centiseconds (10s of milliseconds)."""
        return self._state._query("whisper_full_get_segment_t0_from_state", self._segment_idx)

    def end_timestamp(self) -> int:
        """End time in centiseconds (10s of milliseconds)."""
        return self._state._query("whisper_full_get_segment_t1_from_state", self._segment_idx)

    def n_tokens(self) -> int:
        return self._token_count

    def __len__(self) -> int:
        return self._token_count

    def next_segment_speaker_turn(self) -> bool:
        """Whether the next segment is predicted as a speaker turn (tinydiarize)."""
        return bool(self._state._query(
            "whisper_full_get_segment_speaker_turn_next_from_state", self._segment_idx
        ))

    def no_speech_probability(self) -> float:
        return self._state._query(
            "whisper_full_get_segment_no_speech_prob_from_state", self._segment_idx
        )

    def to_bytes(self) -> bytes:
        """Raw text of this segment, without the null terminator.

        Raises:
            NullPointerError: If the engine returns null
        """
        raw = self._state._query("whisper_full_get_segment_text_from_state", self._segment_idx)
        if raw is None:
            raise NullPointerError(f"segment {self._segment_idx} text is null")
        return raw

    def to_str(self) -> str:
        """Text of this segment as validated UTF-8.

        Raises:
            NullPointerError: If the engine returns null
            InvalidUtf8Error: If the text is not valid UTF-8
        """
        return decode_strict(self.to_bytes())

    def to_str_lossy(self) -> str:
        """Text of this segment with invalid UTF-8 replaced by U+FFFD.

        Raises:
            NullPointerError: If the engine returns null
        """
        return decode_lossy(self.to_bytes())

    def _token_in_bounds(self, token: int) -> bool:
        return 0 <= token < self._token_count

    def get_token(self, token: int) -> Optional["WhisperToken"]:
        """The token at index token, or None when out of bounds."""
        if not self._token_in_bounds(token):
            return None
        return WhisperToken(self, token)

    def get_token_unchecked(self, token: int) -> "WhisperToken":
        """Like get_token() but without the bounds check.

        The caller must guarantee 0 <= token < n_tokens().
        """
        return WhisperToken(self, token)

    def tokens(self) -> List["WhisperToken"]:
        return [WhisperToken(self, i) for i in range(self._token_count)]

    def __iter__(self) -> Iterator["WhisperToken"]:
        return iter(self.tokens())

    def __str__(self) -> str:
        # A null text pointer is an engine bug; let NullPointerError propagate.
        return self.to_str_lossy()

    def __repr__(self) -> str:
        return (
            f"WhisperSegment(segment={self._segment_idx}, n_tokens={self._token_count}, "
            f"start_ts={self.start_timestamp()}, end_ts={self.end_timestamp()}, "
            f"next_segment_speaker_turn={self.next_segment_speaker_turn()}, "
            f"no_speech_probability={self.no_speech_probability():.4f}, "
            f"text={self.to_str_lossy()!r})"
        )


class WhisperToken:
    """A token within a WhisperSegment."""

    def __init__(self, segment: WhisperSegment, token_idx: int):
        self._segment = segment
        self._token_idx = token_idx

    @property
    def segment(self) -> WhisperSegment:
        return self._segment

    def token_index(self) -> int:
        return self._token_idx

    def _query(self, name: str, with_context: bool = False):
        return self._segment.state._query(
            name, self._segment.segment_index(), self._token_idx, with_context=with_context
        )

    def token_id(self) -> int:
        return self._query("whisper_full_get_token_id_from_state")

    def token_data(self) -> _native.WhisperTokenData:
        """Probabilities and timestamps recorded for this token.

        t_dtw is only meaningful when the model was loaded with a DTW mode
        and token timestamps were enabled.
        """
        return self._query("whisper_full_get_token_data_from_state")

    def token_probability(self) -> float:
        return self._query("whisper_full_get_token_p_from_state")

    def to_bytes(self) -> bytes:
        """Raw text of this token.

        Useful for languages where tokens split UTF-8 characters.

        Raises:
            NullPointerError: If the engine returns null
        """
        raw = self._query("whisper_full_get_token_text_from_state", with_context=True)
        if raw is None:
            raise NullPointerError(
                f"token {self._token_idx} of segment {self._segment.segment_index()} text is null"
            )
        return raw

    def to_str(self) -> str:
        return decode_strict(self.to_bytes())

    def to_str_lossy(self) -> str:
        return decode_lossy(self.to_bytes())

    def __str__(self) -> str:
        return self.to_str_lossy()

    def __repr__(self) -> str:
        return (
            f"WhisperToken(segment_idx={self._segment.segment_index()}, "
            f"token_idx={self._token_idx}, token_id={self.token_id()}, "
            f"token_data={self.token_data()!r}, "
            f"token_probability={self.token_probability():.4f})"
        )
