"""Model contexts and shared ownership.

A loaded model is owned by a WhisperInnerContext. It is immutable once
loaded and may be co-owned by any number of WhisperContext handles and
WhisperState objects; each owner holds one ContextRef. The engine's
whisper_free() is called exactly once, when the last reference is
released.
"""

import logging
import os
import threading
import weakref
from typing import List, Optional

import numpy as np

from . import _native
from .errors import GenericError, InitError, InvalidUtf8Error, NullPointerError
from .params import WhisperContextParameters

logger = logging.getLogger(__name__)


def decode_strict(raw: bytes) -> str:
    """Decode engine bytes as UTF-8, raising InvalidUtf8Error on failure."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidUtf8Error.from_decode_error(e) from e


def decode_lossy(raw: bytes) -> str:
    """Decode engine bytes as UTF-8, replacing invalid sequences with U+FFFD."""
    return raw.decode("utf-8", errors="replace")


def _free_context(lib, ptr) -> None:
    logger.debug("Freeing whisper context")
    lib.whisper_free(ptr)


class WhisperInnerContext:
    """Owns the engine's whisper_context handle.

    Read-only accessors are safe to call from several threads at once.
    Ownership is counted through ContextRef tokens; use WhisperContext
    rather than this class directly.
    """

    def __init__(self, lib, ptr, keepalive=None):
        self._lib = lib
        self.ptr = ptr
        # Custom DTW alignment heads are read by the engine when states
        # are created, so they live as long as the model.
        self._keepalive = keepalive
        self._refs = 0
        self._ref_lock = threading.Lock()
        self._finalizer = weakref.finalize(self, _free_context, lib, ptr)

    @classmethod
    def from_file(cls, model_path, params: Optional[WhisperContextParameters] = None,
                  lib=None) -> "WhisperInnerContext":
        if params is None:
            params = WhisperContextParameters()
        lib = lib if lib is not None else _native.get_library()
        path = os.fspath(model_path)
        encoded = path.encode("utf-8")
        if b"\0" in encoded:
            raise ValueError("model_path must not contain null bytes")

        cparams, heads = params.to_struct(lib)
        logger.info(f"Loading whisper model from '{path}'")
        ptr = lib.whisper_init_from_file_with_params_no_state(encoded, cparams)
        if not ptr:
            raise InitError(f"failed to load whisper model from '{path}'")
        return cls(lib, ptr, heads)

    @classmethod
    def from_buffer(cls, buffer, params: Optional[WhisperContextParameters] = None,
                    lib=None) -> "WhisperInnerContext":
        if params is None:
            params = WhisperContextParameters()
        lib = lib if lib is not None else _native.get_library()
        data = np.frombuffer(buffer, dtype=np.uint8)
        if len(data) == 0:
            raise ValueError("buffer cannot be empty")

        cparams, heads = params.to_struct(lib)
        logger.info(f"Loading whisper model from a {len(data)} byte buffer")
        ptr = lib.whisper_init_from_buffer_with_params_no_state(
            data.ctypes.data, len(data), cparams
        )
        if not ptr:
            raise InitError("failed to load whisper model from buffer")
        return cls(lib, ptr, heads)

    @property
    def lib(self):
        return self._lib

    @property
    def freed(self) -> bool:
        return not self._finalizer.alive

    @property
    def ref_count(self) -> int:
        return self._refs

    def acquire(self) -> "ContextRef":
        """Take a new co-ownership reference."""
        with self._ref_lock:
            if not self._finalizer.alive:
                raise NullPointerError("whisper context has been freed")
            self._refs += 1
        return ContextRef(self)

    def _release(self) -> None:
        with self._ref_lock:
            self._refs -= 1
            last = self._refs == 0
        if last:
            self._finalizer()

    # --- model attributes ---

    def n_vocab(self) -> int:
        return self._lib.whisper_n_vocab(self.ptr)

    def n_text_ctx(self) -> int:
        return self._lib.whisper_n_text_ctx(self.ptr)

    def n_audio_ctx(self) -> int:
        return self._lib.whisper_n_audio_ctx(self.ptr)

    def is_multilingual(self) -> bool:
        return self._lib.whisper_is_multilingual(self.ptr) != 0

    def model_n_vocab(self) -> int:
        return self._lib.whisper_model_n_vocab(self.ptr)

    def model_n_audio_ctx(self) -> int:
        return self._lib.whisper_model_n_audio_ctx(self.ptr)

    def model_n_audio_state(self) -> int:
        return self._lib.whisper_model_n_audio_state(self.ptr)

    def model_n_audio_head(self) -> int:
        return self._lib.whisper_model_n_audio_head(self.ptr)

    def model_n_audio_layer(self) -> int:
        return self._lib.whisper_model_n_audio_layer(self.ptr)

    def model_n_text_ctx(self) -> int:
        return self._lib.whisper_model_n_text_ctx(self.ptr)

    def model_n_text_state(self) -> int:
        return self._lib.whisper_model_n_text_state(self.ptr)

    def model_n_text_head(self) -> int:
        return self._lib.whisper_model_n_text_head(self.ptr)

    def model_n_text_layer(self) -> int:
        return self._lib.whisper_model_n_text_layer(self.ptr)

    def model_n_mels(self) -> int:
        return self._lib.whisper_model_n_mels(self.ptr)

    def model_ftype(self) -> int:
        return self._lib.whisper_model_ftype(self.ptr)

    def model_type(self) -> int:
        return self._lib.whisper_model_type(self.ptr)

    def model_type_readable_bytes(self) -> bytes:
        raw = self._lib.whisper_model_type_readable(self.ptr)
        if raw is None:
            raise NullPointerError("model type label is null")
        return raw

    # --- tokens ---

    def tokenize(self, text: str, max_tokens: int) -> List[int]:
        if not isinstance(text, str):
            raise TypeError(f"text must be str, got {type(text).__name__}")
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be positive integer, got {max_tokens}")
        tokens = (_native.whisper_token * max_tokens)()
        ret = self._lib.whisper_tokenize(self.ptr, text.encode("utf-8"), tokens, max_tokens)
        if ret < 0:
            raise GenericError(ret)
        return list(tokens[:ret])

    def token_count(self, text: str) -> int:
        ret = self._lib.whisper_token_count(self.ptr, text.encode("utf-8"))
        if ret < 0:
            raise GenericError(ret)
        return ret

    def token_to_bytes(self, token_id: int) -> bytes:
        raw = self._lib.whisper_token_to_str(self.ptr, token_id)
        if raw is None:
            raise NullPointerError(f"token {token_id} text is null")
        return raw

    def token_eot(self) -> int:
        return self._lib.whisper_token_eot(self.ptr)

    def token_sot(self) -> int:
        return self._lib.whisper_token_sot(self.ptr)

    def token_solm(self) -> int:
        return self._lib.whisper_token_solm(self.ptr)

    def token_prev(self) -> int:
        return self._lib.whisper_token_prev(self.ptr)

    def token_nosp(self) -> int:
        return self._lib.whisper_token_nosp(self.ptr)

    def token_not(self) -> int:
        return self._lib.whisper_token_not(self.ptr)

    def token_beg(self) -> int:
        return self._lib.whisper_token_beg(self.ptr)

    def token_lang(self, lang_id: int) -> int:
        return self._lib.whisper_token_lang(self.ptr, lang_id)

    def token_translate(self) -> int:
        return self._lib.whisper_token_translate(self.ptr)

    def token_transcribe(self) -> int:
        return self._lib.whisper_token_transcribe(self.ptr)

    def print_timings(self) -> None:
        self._lib.whisper_print_timings(self.ptr)

    def reset_timings(self) -> None:
        self._lib.whisper_reset_timings(self.ptr)


class ContextRef:
    """One co-ownership reference to a WhisperInnerContext.

    release() is idempotent per reference. References that are never
    released explicitly are released when garbage collected.
    """

    def __init__(self, inner: WhisperInnerContext):
        self._inner = inner
        self._finalizer = weakref.finalize(self, inner._release)

    @property
    def inner(self) -> WhisperInnerContext:
        if not self._finalizer.alive:
            raise NullPointerError("context reference has been released")
        return self._inner

    @property
    def released(self) -> bool:
        return not self._finalizer.alive

    def release(self) -> None:
        self._finalizer()


class WhisperContext:
    """A shareable handle to a loaded Whisper model.

    Example:
        >>> ctx = WhisperContext("ggml-tiny.bin")
        >>> state = ctx.create_state()
        >>> state.full(FullParams(BeamSearch(5, -1.0)), samples)
        >>> for segment in state:
        ...     print(f"[{segment.start_timestamp()} - {segment.end_timestamp()}]: {segment}")

    clone() (or copy.copy) returns another handle over the same model.
    Every handle and every state created from it holds one reference; the
    model is freed when the last of them is closed or collected.

    Token-to-text helpers forward ids straight to the engine. An id
    outside [0, n_vocab) can make the engine abort the whole process;
    use token_to_str_checked() when the id is not known to be valid.
    """

    def __init__(self, model_path, params: Optional[WhisperContextParameters] = None,
                 lib=None):
        """Load a model from a file.

        Args:
            model_path: Path to a ggml Whisper model
            params: Loading parameters (default: WhisperContextParameters())
            lib: Engine library (default: the active library)

        Raises:
            InitError: If the engine fails to load the model
        """
        inner = WhisperInnerContext.from_file(model_path, params, lib)
        self._ref = inner.acquire()

    @classmethod
    def from_buffer(cls, buffer, params: Optional[WhisperContextParameters] = None,
                    lib=None) -> "WhisperContext":
        """Load a model from an in-memory buffer.

        Raises:
            InitError: If the engine fails to load the model
        """
        return cls._wrap(WhisperInnerContext.from_buffer(buffer, params, lib))

    @classmethod
    def _wrap(cls, inner: WhisperInnerContext) -> "WhisperContext":
        self = cls.__new__(cls)
        self._ref = inner.acquire()
        return self

    @property
    def _ctx(self) -> WhisperInnerContext:
        return self._ref.inner

    @property
    def closed(self) -> bool:
        return self._ref.released

    def clone(self) -> "WhisperContext":
        """Return another handle sharing this model."""
        return self._wrap(self._ctx)

    def __copy__(self) -> "WhisperContext":
        return self.clone()

    def close(self) -> None:
        """Release this handle's reference. Safe to call more than once."""
        self._ref.release()

    def __enter__(self) -> "WhisperContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def create_state(self) -> "WhisperState":
        """Create a new decoding state bound to this model.

        Raises:
            InitError: If the engine fails to allocate the state
        """
        from .state import WhisperState

        inner = self._ctx
        ptr = inner.lib.whisper_init_state(inner.ptr)
        if not ptr:
            raise InitError("failed to create whisper state")
        logger.debug("Created whisper state")
        return WhisperState(inner.acquire(), ptr)

    def tokenize(self, text: str, max_tokens: int) -> List[int]:
        """Convert text into at most max_tokens token ids.

        Raises:
            GenericError: If the engine reports an error, e.g. when the
                text needs more than max_tokens tokens
        """
        return self._ctx.tokenize(text, max_tokens)

    def token_count(self, text: str) -> int:
        """Number of tokens text would be split into."""
        return self._ctx.token_count(text)

    def n_vocab(self) -> int:
        return self._ctx.n_vocab()

    def n_text_ctx(self) -> int:
        return self._ctx.n_text_ctx()

    def n_audio_ctx(self) -> int:
        return self._ctx.n_audio_ctx()

    def is_multilingual(self) -> bool:
        """Does this model support multiple languages?"""
        return self._ctx.is_multilingual()

    def model_n_vocab(self) -> int:
        return self._ctx.model_n_vocab()

    def model_n_audio_ctx(self) -> int:
        return self._ctx.model_n_audio_ctx()

    def model_n_audio_state(self) -> int:
        return self._ctx.model_n_audio_state()

    def model_n_audio_head(self) -> int:
        return self._ctx.model_n_audio_head()

    def model_n_audio_layer(self) -> int:
        return self._ctx.model_n_audio_layer()

    def model_n_text_ctx(self) -> int:
        return self._ctx.model_n_text_ctx()

    def model_n_text_state(self) -> int:
        return self._ctx.model_n_text_state()

    def model_n_text_head(self) -> int:
        return self._ctx.model_n_text_head()

    def model_n_text_layer(self) -> int:
        return self._ctx.model_n_text_layer()

    def model_n_mels(self) -> int:
        return self._ctx.model_n_mels()

    def model_ftype(self) -> int:
        return self._ctx.model_ftype()

    def model_type(self) -> int:
        return self._ctx.model_type()

    def model_type_readable_bytes(self) -> bytes:
        """Raw model type label, e.g. b"tiny".

        Raises:
            NullPointerError: If the engine returns null
        """
        return self._ctx.model_type_readable_bytes()

    def model_type_readable_str(self) -> str:
        """Model type label as validated UTF-8.

        Raises:
            NullPointerError: If the engine returns null
            InvalidUtf8Error: If the label is not valid UTF-8
        """
        return decode_strict(self.model_type_readable_bytes())

    def model_type_readable_str_lossy(self) -> str:
        return decode_lossy(self.model_type_readable_bytes())

    def token_to_bytes(self, token_id: int) -> bytes:
        """Raw text of a token id.

        Warning: an out-of-range id may abort the process inside the
        engine; this is not checked.

        Raises:
            NullPointerError: If the engine returns null
        """
        return self._ctx.token_to_bytes(token_id)

    def token_to_str(self, token_id: int) -> str:
        """Text of a token id as validated UTF-8. Same hazard as token_to_bytes()."""
        return decode_strict(self.token_to_bytes(token_id))

    def token_to_str_lossy(self, token_id: int) -> str:
        """Text of a token id with invalid UTF-8 replaced. Same hazard as token_to_bytes()."""
        return decode_lossy(self.token_to_bytes(token_id))

    def token_to_str_checked(self, token_id: int) -> Optional[str]:
        """Lossy text of a token id, or None when the id is outside the vocabulary."""
        if not 0 <= token_id < self.n_vocab():
            return None
        return self.token_to_str_lossy(token_id)

    def token_eot(self) -> int:
        """Id of the end-of-text token."""
        return self._ctx.token_eot()

    def token_sot(self) -> int:
        """Id of the start-of-text token."""
        return self._ctx.token_sot()

    def token_solm(self) -> int:
        return self._ctx.token_solm()

    def token_prev(self) -> int:
        return self._ctx.token_prev()

    def token_nosp(self) -> int:
        return self._ctx.token_nosp()

    def token_not(self) -> int:
        return self._ctx.token_not()

    def token_beg(self) -> int:
        return self._ctx.token_beg()

    def token_lang(self, lang_id: int) -> int:
        """Id of the token for language lang_id."""
        return self._ctx.token_lang(lang_id)

    def token_translate(self) -> int:
        return self._ctx.token_translate()

    def token_transcribe(self) -> int:
        return self._ctx.token_transcribe()

    def print_timings(self) -> None:
        """Print engine performance counters to stderr."""
        self._ctx.print_timings()

    def reset_timings(self) -> None:
        self._ctx.reset_timings()

    def __repr__(self) -> str:
        if self.closed:
            return "WhisperContext(closed)"
        return (
            f"WhisperContext(n_vocab={self.n_vocab()}, "
            f"multilingual={self.is_multilingual()}, refs={self._ctx.ref_count})"
        )

