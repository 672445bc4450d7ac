"""Parameter objects for loading models and running the full pipeline.

FullParams wraps the engine's whisper_full_params struct and keeps alive
every buffer and callback the struct points at. WhisperContextParameters
describes how a model is loaded, including DTW token alignment.

Callbacks run on engine worker threads. They are wrapped in trampolines
that never let a Python exception unwind into the engine: a failing
callback is logged and its exception appended to FullParams.callback_errors,
which can be inspected after WhisperState.full() returns.
"""

import ctypes
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from . import _native
from .data_models import (
    BeamSearch,
    DtwCustom,
    DtwDisabled,
    DtwMode,
    DtwPreset,
    DtwTopMost,
    Greedy,
    SamplingStrategy,
    SegmentCallbackData,
)
from .errors import InvalidUtf8Error, NullPointerError
from .utilities import token_buffer
from .vad import WhisperVadParams

logger = logging.getLogger(__name__)

DEFAULT_DTW_MEM_SIZE = 1024 * 1024 * 128


def _encode_c_string(value: str, name: str) -> bytes:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be str, got {type(value).__name__}")
    data = value.encode("utf-8")
    if b"\0" in data:
        raise ValueError(f"{name} must not contain null bytes")
    return data


def _guarded(name: str, func: Callable, errors: List[BaseException], fallback: Any = None):
    """Wrap func so that exceptions are recorded instead of propagated."""

    def wrapper(*args):
        try:
            return func(*args)
        except Exception as e:
            logger.exception(f"Exception in {name} callback; ignoring")
            errors.append(e)
            return fallback

    return wrapper


@dataclass
class WhisperContextParameters:
    """Parameters used when loading a model.

    Attributes:
        use_gpu: Let the engine use a GPU backend if it was built with one
        flash_attn: Enable flash attention
        gpu_device: Index of the GPU device to use
        dtw_mode: DTW token alignment mode (disabled by default)
        dtw_mem_size: Memory reserved for DTW in bytes
    """
    use_gpu: bool = False
    flash_attn: bool = False
    gpu_device: int = 0
    dtw_mode: DtwMode = field(default_factory=DtwDisabled)
    dtw_mem_size: int = DEFAULT_DTW_MEM_SIZE

    def __post_init__(self):
        if not isinstance(self.gpu_device, int) or self.gpu_device < 0:
            raise ValueError(
                f"gpu_device must be a non-negative integer, got {self.gpu_device!r}"
            )
        if not isinstance(self.dtw_mode, (DtwDisabled, DtwTopMost, DtwPreset, DtwCustom)):
            raise TypeError(
                f"dtw_mode must be a DTW mode, got {type(self.dtw_mode).__name__}"
            )
        if isinstance(self.dtw_mode, DtwTopMost) and self.dtw_mode.n_top < 1:
            raise ValueError(f"n_top must be positive, got {self.dtw_mode.n_top}")
        if self.dtw_mem_size < 0:
            raise ValueError(f"dtw_mem_size must be non-negative, got {self.dtw_mem_size}")

    def to_struct(self, lib) -> Tuple[_native.WhisperContextParamsStruct, Any]:
        """Build the engine struct.

        Returns:
            The struct and the alignment-head array it points at (or None).
            The array must stay alive as long as any context loaded with
            the struct, since states read it when they are created.
        """
        cp = lib.whisper_context_default_params()
        cp.use_gpu = self.use_gpu
        cp.flash_attn = self.flash_attn
        cp.gpu_device = self.gpu_device
        cp.dtw_mem_size = self.dtw_mem_size

        heads = None
        mode = self.dtw_mode
        if isinstance(mode, DtwDisabled):
            cp.dtw_token_timestamps = False
            cp.dtw_aheads_preset = _native.WHISPER_AHEADS_NONE
        elif isinstance(mode, DtwTopMost):
            cp.dtw_token_timestamps = True
            cp.dtw_aheads_preset = _native.WHISPER_AHEADS_N_TOP_MOST
            cp.dtw_n_top = mode.n_top
        elif isinstance(mode, DtwPreset):
            cp.dtw_token_timestamps = True
            cp.dtw_aheads_preset = mode.model_preset.value
        else:
            cp.dtw_token_timestamps = True
            cp.dtw_aheads_preset = _native.WHISPER_AHEADS_CUSTOM
            heads = (_native.WhisperAhead * len(mode.aheads))(
                *[_native.WhisperAhead(a.n_text_layer, a.n_head) for a in mode.aheads]
            )
            cp.dtw_aheads.n_heads = len(mode.aheads)
            cp.dtw_aheads.heads = ctypes.cast(heads, ctypes.POINTER(_native.WhisperAhead))
        return cp, heads


class FullParams:
    """Configuration for a single WhisperState.full() run.

    Defaults are taken from the engine for the chosen sampling strategy.

    Example:
        >>> params = FullParams(BeamSearch(beam_size=5, patience=-1.0))
        >>> params.set_language("en")
        >>> params.set_print_progress(False)

    Attributes:
        strategy: The sampling strategy this object was built with
        callback_errors: Exceptions raised by user callbacks during runs
        fp: The underlying whisper_full_params struct
    """

    def __init__(self, strategy: Optional[SamplingStrategy] = None, lib=None):
        if strategy is None:
            strategy = Greedy()
        if isinstance(strategy, Greedy):
            code = _native.WHISPER_SAMPLING_GREEDY
        elif isinstance(strategy, BeamSearch):
            code = _native.WHISPER_SAMPLING_BEAM_SEARCH
        else:
            raise TypeError(
                f"strategy must be Greedy or BeamSearch, got {type(strategy).__name__}"
            )

        self._lib = lib if lib is not None else _native.get_library()
        self.strategy = strategy
        self.fp = self._lib.whisper_full_default_params(code)
        if isinstance(strategy, Greedy):
            self.fp.greedy.best_of = strategy.best_of
        else:
            self.fp.beam_search.beam_size = strategy.beam_size
            self.fp.beam_search.patience = strategy.patience

        self.callback_errors: List[BaseException] = []
        # Buffers and ctypes callbacks referenced by self.fp
        self._keepalive = {}

    def _set_string(self, name: str, value: Optional[str]) -> None:
        if value is None:
            self._keepalive.pop(name, None)
            setattr(self.fp, name, None)
            return
        data = _encode_c_string(value, name)
        self._keepalive[name] = data
        setattr(self.fp, name, data)

    # --- threading and windowing ---

    def set_n_threads(self, n_threads: int) -> None:
        """Set the number of threads the engine uses. Defaults to min(4, cores).

        Values below 1 are rejected with InvalidThreadCount when full() runs.
        """
        self.fp.n_threads = n_threads

    def set_n_max_text_ctx(self, n_max_text_ctx: int) -> None:
        """Max tokens to use from past text as a prompt for the decoder. Defaults to 16384."""
        self.fp.n_max_text_ctx = n_max_text_ctx

    def set_offset_ms(self, offset_ms: int) -> None:
        """Start offset in milliseconds. Defaults to 0."""
        self.fp.offset_ms = offset_ms

    def set_duration_ms(self, duration_ms: int) -> None:
        """Audio duration to process in milliseconds. Defaults to 0 (everything)."""
        self.fp.duration_ms = duration_ms

    # --- behaviour ---

    def set_translate(self, translate: bool) -> None:
        """Translate the output to English. Defaults to False."""
        self.fp.translate = translate

    def set_no_context(self, no_context: bool) -> None:
        """Do not use past transcription as the initial prompt. Defaults to True."""
        self.fp.no_context = no_context

    def set_no_timestamps(self, no_timestamps: bool) -> None:
        self.fp.no_timestamps = no_timestamps

    def set_single_segment(self, single_segment: bool) -> None:
        """Force single segment output, useful for streaming. Defaults to False."""
        self.fp.single_segment = single_segment

    def set_print_special(self, print_special: bool) -> None:
        self.fp.print_special = print_special

    def set_print_progress(self, print_progress: bool) -> None:
        self.fp.print_progress = print_progress

    def set_print_realtime(self, print_realtime: bool) -> None:
        self.fp.print_realtime = print_realtime

    def set_print_timestamps(self, print_timestamps: bool) -> None:
        self.fp.print_timestamps = print_timestamps

    def set_token_timestamps(self, token_timestamps: bool) -> None:
        """Enable token-level timestamps. Defaults to False."""
        self.fp.token_timestamps = token_timestamps

    def set_thold_pt(self, thold_pt: float) -> None:
        """Timestamp token probability threshold. Defaults to 0.01."""
        self.fp.thold_pt = thold_pt

    def set_thold_ptsum(self, thold_ptsum: float) -> None:
        """Timestamp token sum probability threshold. Defaults to 0.01."""
        self.fp.thold_ptsum = thold_ptsum

    def set_max_len(self, max_len: int) -> None:
        """Max segment length in characters. Defaults to 0 (no limit)."""
        self.fp.max_len = max_len

    def set_split_on_word(self, split_on_word: bool) -> None:
        """Split on word rather than token when max_len is set. Defaults to False."""
        self.fp.split_on_word = split_on_word

    def set_max_tokens(self, max_tokens: int) -> None:
        """Max tokens per segment. Defaults to 0 (no limit)."""
        self.fp.max_tokens = max_tokens

    def set_debug_mode(self, debug_mode: bool) -> None:
        self.fp.debug_mode = debug_mode

    def set_audio_ctx(self, audio_ctx: int) -> None:
        """Overwrite the audio context size. Defaults to 0 (model default)."""
        self.fp.audio_ctx = audio_ctx

    def set_tdrz_enable(self, tdrz_enable: bool) -> None:
        """Enable tinydiarize speaker turn detection. Defaults to False."""
        self.fp.tdrz_enable = tdrz_enable

    def set_suppress_regex(self, regex: Optional[str]) -> None:
        """Regular expression matching tokens to suppress. None disables it."""
        self._set_string("suppress_regex", regex)

    def set_initial_prompt(self, initial_prompt: Optional[str]) -> None:
        """Text prepended as a prompt to the decoder. None clears it."""
        self._set_string("initial_prompt", initial_prompt)

    def set_tokens(self, tokens: Optional[Sequence[int]]) -> None:
        """Token ids provided to the decoder as an initial prompt.

        At most n_text_ctx / 2 tokens are used by the engine. None clears
        the prompt.
        """
        if tokens is None or len(tokens) == 0:
            self._keepalive.pop("prompt_tokens", None)
            self.fp.prompt_tokens = ctypes.POINTER(_native.whisper_token)()
            self.fp.prompt_n_tokens = 0
            return
        array, ptr = token_buffer(tokens, "tokens")
        self._keepalive["prompt_tokens"] = array
        self.fp.prompt_tokens = ptr
        self.fp.prompt_n_tokens = len(array)

    def set_language(self, language: Optional[str]) -> None:
        """Set the spoken language as a code such as "en".

        None (or "auto") lets the engine detect the language.
        """
        if language is not None and not isinstance(language, str):
            raise TypeError(f"language must be str or None, got {type(language).__name__}")
        self._set_string("language", language)

    def set_detect_language(self, detect_language: bool) -> None:
        """Only detect the language and stop. Defaults to False."""
        self.fp.detect_language = detect_language

    def set_suppress_blank(self, suppress_blank: bool) -> None:
        self.fp.suppress_blank = suppress_blank

    def set_suppress_nst(self, suppress_nst: bool) -> None:
        """Suppress non-speech tokens. Defaults to False."""
        self.fp.suppress_nst = suppress_nst

    def set_temperature(self, temperature: float) -> None:
        """Initial decoding temperature. Defaults to 0.0."""
        self.fp.temperature = temperature

    def set_max_initial_ts(self, max_initial_ts: float) -> None:
        self.fp.max_initial_ts = max_initial_ts

    def set_length_penalty(self, length_penalty: float) -> None:
        self.fp.length_penalty = length_penalty

    def set_temperature_inc(self, temperature_inc: float) -> None:
        """Temperature increase used on fallback. Defaults to 0.2."""
        self.fp.temperature_inc = temperature_inc

    def set_entropy_thold(self, entropy_thold: float) -> None:
        """Similar to OpenAI's compression_ratio_threshold. Defaults to 2.4."""
        self.fp.entropy_thold = entropy_thold

    def set_logprob_thold(self, logprob_thold: float) -> None:
        self.fp.logprob_thold = logprob_thold

    def set_no_speech_thold(self, no_speech_thold: float) -> None:
        self.fp.no_speech_thold = no_speech_thold

    # --- VAD inside full() ---

    def enable_vad(self, enable: bool) -> None:
        """Run voice activity detection before transcription."""
        self.fp.vad = enable

    def set_vad_model_path(self, path: Optional[str]) -> None:
        self._set_string("vad_model_path", None if path is None else str(path))

    def set_vad_params(self, params: WhisperVadParams) -> None:
        self.fp.vad_params = params.to_struct()

    # --- callbacks ---

    def _install(self, name: str, cfunc, user_data_field: str) -> None:
        self._keepalive[name] = cfunc
        setattr(self.fp, name, cfunc)
        setattr(self.fp, user_data_field, None)

    def _clear(self, name: str, cfunc_type, user_data_field: str) -> None:
        self._keepalive.pop(name, None)
        setattr(self.fp, name, cfunc_type())
        setattr(self.fp, user_data_field, None)

    def set_progress_callback(self, callback: Optional[Callable[[int], None]]) -> None:
        """Call callback with the progress percentage (0-100).

        Pass None to remove a previously installed callback.
        """
        if callback is None:
            self._clear("progress_callback", _native.ProgressCallback,
                        "progress_callback_user_data")
            return
        guarded = _guarded("progress", callback, self.callback_errors)

        def trampoline(ctx, state, progress, user_data):
            guarded(progress)

        self._install("progress_callback", _native.ProgressCallback(trampoline),
                      "progress_callback_user_data")

    def _segment_trampoline(self, callback, lossy: bool):
        lib = self._lib
        errors = self.callback_errors

        def deliver(state, i):
            raw = lib.whisper_full_get_segment_text_from_state(state, i)
            if raw is None:
                raise NullPointerError(f"segment {i} text is null")
            if lossy:
                text = raw.decode("utf-8", errors="replace")
            else:
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise InvalidUtf8Error.from_decode_error(e) from e
            callback(SegmentCallbackData(
                segment=i,
                start_timestamp=lib.whisper_full_get_segment_t0_from_state(state, i),
                end_timestamp=lib.whisper_full_get_segment_t1_from_state(state, i),
                text=text,
            ))

        guarded = _guarded("new segment", deliver, errors)

        def trampoline(ctx, state, n_new, user_data):
            # A failing segment is recorded; the rest of the batch is still delivered.
            n_segments = lib.whisper_full_n_segments_from_state(state)
            for i in range(max(0, n_segments - n_new), n_segments):
                guarded(state, i)

        return _native.NewSegmentCallback(trampoline)

    def set_segment_callback(
        self, callback: Optional[Callable[[SegmentCallbackData], None]]
    ) -> None:
        """Call callback for every newly decoded segment.

        The callback receives a SegmentCallbackData snapshot, not a live
        view of the state. Segments whose text is not valid UTF-8 are
        skipped and the error is recorded in callback_errors; use
        set_segment_callback_lossy() to receive them with replacement
        characters instead.
        """
        if callback is None:
            self._clear("new_segment_callback", _native.NewSegmentCallback,
                        "new_segment_callback_user_data")
            return
        self._install("new_segment_callback", self._segment_trampoline(callback, False),
                      "new_segment_callback_user_data")

    def set_segment_callback_lossy(
        self, callback: Optional[Callable[[SegmentCallbackData], None]]
    ) -> None:
        """Like set_segment_callback() but invalid UTF-8 is replaced with U+FFFD."""
        if callback is None:
            self._clear("new_segment_callback", _native.NewSegmentCallback,
                        "new_segment_callback_user_data")
            return
        self._install("new_segment_callback", self._segment_trampoline(callback, True),
                      "new_segment_callback_user_data")

    def set_encoder_begin_callback(self, callback: Optional[Callable[[], bool]]) -> None:
        """Call callback before each encoder run; returning False aborts it.

        A callback that raises is treated as returning True.
        """
        if callback is None:
            self._clear("encoder_begin_callback", _native.EncoderBeginCallback,
                        "encoder_begin_callback_user_data")
            return
        guarded = _guarded("encoder begin", callback, self.callback_errors, fallback=True)

        def trampoline(ctx, state, user_data):
            return bool(guarded())

        self._install("encoder_begin_callback", _native.EncoderBeginCallback(trampoline),
                      "encoder_begin_callback_user_data")

    def set_abort_callback(self, callback: Optional[Callable[[], bool]]) -> None:
        """Poll callback during computation; returning True aborts the run.

        A callback that raises is treated as returning False.
        """
        if callback is None:
            self._clear("abort_callback", _native.AbortCallback, "abort_callback_user_data")
            return
        guarded = _guarded("abort", callback, self.callback_errors, fallback=False)

        def trampoline(user_data):
            return bool(guarded())

        self._install("abort_callback", _native.AbortCallback(trampoline),
                      "abort_callback_user_data")

    def __repr__(self) -> str:
        return f"FullParams(strategy={self.strategy!r}, n_threads={self.fp.n_threads})"
