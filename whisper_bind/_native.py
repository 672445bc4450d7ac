"""ctypes declarations for the whisper.cpp C API.

This module describes the struct layouts and function signatures of
whisper.h and is responsible for locating and loading the shared library.
Nothing here owns engine memory; the wrapper classes in the rest of the
package do.

The library is found, in order, from an explicit path given to
load_library(), the WHISPER_LIBRARY_PATH environment variable,
ctypes.util.find_library("whisper") and finally the platform default file
names.
"""

import ctypes
import ctypes.util
import logging
import os
import sys
import threading
from ctypes import (
    CFUNCTYPE,
    POINTER,
    Structure,
    c_bool,
    c_char_p,
    c_float,
    c_int,
    c_int32,
    c_int64,
    c_size_t,
    c_void_p,
)
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

LIBRARY_ENV_VAR = "WHISPER_LIBRARY_PATH"

INT_MAX = 2**31 - 1

whisper_token = c_int32

# enum whisper_sampling_strategy
WHISPER_SAMPLING_GREEDY = 0
WHISPER_SAMPLING_BEAM_SEARCH = 1

# enum whisper_alignment_heads_preset
WHISPER_AHEADS_NONE = 0
WHISPER_AHEADS_N_TOP_MOST = 1
WHISPER_AHEADS_CUSTOM = 2
WHISPER_AHEADS_TINY_EN = 3
WHISPER_AHEADS_TINY = 4
WHISPER_AHEADS_BASE_EN = 5
WHISPER_AHEADS_BASE = 6
WHISPER_AHEADS_SMALL_EN = 7
WHISPER_AHEADS_SMALL = 8
WHISPER_AHEADS_MEDIUM_EN = 9
WHISPER_AHEADS_MEDIUM = 10
WHISPER_AHEADS_LARGE_V1 = 11
WHISPER_AHEADS_LARGE_V2 = 12
WHISPER_AHEADS_LARGE_V3 = 13
WHISPER_AHEADS_LARGE_V3_TURBO = 14

# enum ggml_log_level
GGML_LOG_LEVEL_NONE = 0
GGML_LOG_LEVEL_DEBUG = 1
GGML_LOG_LEVEL_INFO = 2
GGML_LOG_LEVEL_WARN = 3
GGML_LOG_LEVEL_ERROR = 4
GGML_LOG_LEVEL_CONT = 5


class WhisperAhead(Structure):
    _fields_ = [
        ("n_text_layer", c_int),
        ("n_head", c_int),
    ]


class WhisperAheads(Structure):
    _fields_ = [
        ("n_heads", c_size_t),
        ("heads", POINTER(WhisperAhead)),
    ]


class WhisperContextParamsStruct(Structure):
    """struct whisper_context_params"""

    _fields_ = [
        ("use_gpu", c_bool),
        ("flash_attn", c_bool),
        ("gpu_device", c_int),
        ("dtw_token_timestamps", c_bool),
        ("dtw_aheads_preset", c_int),
        ("dtw_n_top", c_int),
        ("dtw_aheads", WhisperAheads),
        ("dtw_mem_size", c_size_t),
    ]


class WhisperTokenData(Structure):
    """Per-token record produced by the decoder.

    Attributes:
        id: Token id
        tid: Forced timestamp token id
        p: Probability of the token
        plog: Log probability of the token
        pt: Probability of the timestamp token
        ptsum: Sum of probabilities of all timestamp tokens
        t0: Start time of the token (centiseconds, token timestamps only)
        t1: End time of the token (centiseconds, token timestamps only)
        t_dtw: DTW-aligned time of the token (DTW only, -1 otherwise)
        vlen: Voice length of the token
    """

    _fields_ = [
        ("id", whisper_token),
        ("tid", whisper_token),
        ("p", c_float),
        ("plog", c_float),
        ("pt", c_float),
        ("ptsum", c_float),
        ("t0", c_int64),
        ("t1", c_int64),
        ("t_dtw", c_int64),
        ("vlen", c_float),
    ]

    def __repr__(self) -> str:
        return (
            f"WhisperTokenData(id={self.id}, tid={self.tid}, p={self.p:.4f}, "
            f"plog={self.plog:.4f}, pt={self.pt:.4f}, ptsum={self.ptsum:.4f}, "
            f"t0={self.t0}, t1={self.t1}, t_dtw={self.t_dtw}, vlen={self.vlen:.4f})"
        )


class WhisperVadParamsStruct(Structure):
    """struct whisper_vad_params"""

    _fields_ = [
        ("threshold", c_float),
        ("min_speech_duration_ms", c_int),
        ("min_silence_duration_ms", c_int),
        ("max_speech_duration_s", c_float),
        ("speech_pad_ms", c_int),
        ("samples_overlap", c_float),
    ]


class WhisperVadContextParamsStruct(Structure):
    """struct whisper_vad_context_params"""

    _fields_ = [
        ("n_threads", c_int),
        ("use_gpu", c_bool),
        ("gpu_device", c_int),
    ]


# Callback signatures. Contexts and states are passed as opaque pointers.
NewSegmentCallback = CFUNCTYPE(None, c_void_p, c_void_p, c_int, c_void_p)
ProgressCallback = CFUNCTYPE(None, c_void_p, c_void_p, c_int, c_void_p)
EncoderBeginCallback = CFUNCTYPE(c_bool, c_void_p, c_void_p, c_void_p)
AbortCallback = CFUNCTYPE(c_bool, c_void_p)
LogitsFilterCallback = CFUNCTYPE(
    None, c_void_p, c_void_p, POINTER(WhisperTokenData), c_int, POINTER(c_float), c_void_p
)
LogCallback = CFUNCTYPE(None, c_int, c_char_p, c_void_p)


class _GreedyParams(Structure):
    _fields_ = [("best_of", c_int)]


class _BeamSearchParams(Structure):
    _fields_ = [
        ("beam_size", c_int),
        ("patience", c_float),
    ]


class WhisperFullParamsStruct(Structure):
    """struct whisper_full_params"""

    _fields_ = [
        ("strategy", c_int),
        ("n_threads", c_int),
        ("n_max_text_ctx", c_int),
        ("offset_ms", c_int),
        ("duration_ms", c_int),
        ("translate", c_bool),
        ("no_context", c_bool),
        ("no_timestamps", c_bool),
        ("single_segment", c_bool),
        ("print_special", c_bool),
        ("print_progress", c_bool),
        ("print_realtime", c_bool),
        ("print_timestamps", c_bool),
        ("token_timestamps", c_bool),
        ("thold_pt", c_float),
        ("thold_ptsum", c_float),
        ("max_len", c_int),
        ("split_on_word", c_bool),
        ("max_tokens", c_int),
        ("debug_mode", c_bool),
        ("audio_ctx", c_int),
        ("tdrz_enable", c_bool),
        ("suppress_regex", c_char_p),
        ("initial_prompt", c_char_p),
        ("prompt_tokens", POINTER(whisper_token)),
        ("prompt_n_tokens", c_int),
        ("language", c_char_p),
        ("detect_language", c_bool),
        ("suppress_blank", c_bool),
        ("suppress_nst", c_bool),
        ("temperature", c_float),
        ("max_initial_ts", c_float),
        ("length_penalty", c_float),
        ("temperature_inc", c_float),
        ("entropy_thold", c_float),
        ("logprob_thold", c_float),
        ("no_speech_thold", c_float),
        ("greedy", _GreedyParams),
        ("beam_search", _BeamSearchParams),
        ("new_segment_callback", NewSegmentCallback),
        ("new_segment_callback_user_data", c_void_p),
        ("progress_callback", ProgressCallback),
        ("progress_callback_user_data", c_void_p),
        ("encoder_begin_callback", EncoderBeginCallback),
        ("encoder_begin_callback_user_data", c_void_p),
        ("abort_callback", AbortCallback),
        ("abort_callback_user_data", c_void_p),
        ("logits_filter_callback", LogitsFilterCallback),
        ("logits_filter_callback_user_data", c_void_p),
        ("grammar_rules", c_void_p),
        ("n_grammar_rules", c_size_t),
        ("i_start_rule", c_size_t),
        ("grammar_penalty", c_float),
        ("vad", c_bool),
        ("vad_model_path", c_char_p),
        ("vad_params", WhisperVadParamsStruct),
    ]


# name -> (restype, argtypes)
_SIGNATURES = {
    # context lifecycle
    "whisper_context_default_params": (WhisperContextParamsStruct, []),
    "whisper_init_from_file_with_params_no_state": (
        c_void_p, [c_char_p, WhisperContextParamsStruct]
    ),
    "whisper_init_from_buffer_with_params_no_state": (
        c_void_p, [c_void_p, c_size_t, WhisperContextParamsStruct]
    ),
    "whisper_init_state": (c_void_p, [c_void_p]),
    "whisper_free": (None, [c_void_p]),
    "whisper_free_state": (None, [c_void_p]),
    # pipeline
    "whisper_pcm_to_mel_with_state": (
        c_int, [c_void_p, c_void_p, POINTER(c_float), c_int, c_int]
    ),
    "whisper_set_mel_with_state": (
        c_int, [c_void_p, c_void_p, POINTER(c_float), c_int, c_int]
    ),
    "whisper_encode_with_state": (c_int, [c_void_p, c_void_p, c_int, c_int]),
    "whisper_decode_with_state": (
        c_int, [c_void_p, c_void_p, POINTER(whisper_token), c_int, c_int, c_int]
    ),
    "whisper_lang_auto_detect_with_state": (
        c_int, [c_void_p, c_void_p, c_int, c_int, POINTER(c_float)]
    ),
    "whisper_get_logits_from_state": (POINTER(c_float), [c_void_p]),
    "whisper_n_len_from_state": (c_int, [c_void_p]),
    "whisper_full_default_params": (WhisperFullParamsStruct, [c_int]),
    "whisper_full_with_state": (
        c_int, [c_void_p, c_void_p, WhisperFullParamsStruct, POINTER(c_float), c_int]
    ),
    # results
    "whisper_full_n_segments_from_state": (c_int, [c_void_p]),
    "whisper_full_lang_id_from_state": (c_int, [c_void_p]),
    "whisper_full_get_segment_t0_from_state": (c_int64, [c_void_p, c_int]),
    "whisper_full_get_segment_t1_from_state": (c_int64, [c_void_p, c_int]),
    "whisper_full_get_segment_speaker_turn_next_from_state": (c_bool, [c_void_p, c_int]),
    "whisper_full_get_segment_text_from_state": (c_char_p, [c_void_p, c_int]),
    "whisper_full_get_segment_no_speech_prob_from_state": (c_float, [c_void_p, c_int]),
    "whisper_full_n_tokens_from_state": (c_int, [c_void_p, c_int]),
    "whisper_full_get_token_text_from_state": (
        c_char_p, [c_void_p, c_void_p, c_int, c_int]
    ),
    "whisper_full_get_token_id_from_state": (whisper_token, [c_void_p, c_int, c_int]),
    "whisper_full_get_token_data_from_state": (WhisperTokenData, [c_void_p, c_int, c_int]),
    "whisper_full_get_token_p_from_state": (c_float, [c_void_p, c_int, c_int]),
    # model introspection
    "whisper_n_vocab": (c_int, [c_void_p]),
    "whisper_n_text_ctx": (c_int, [c_void_p]),
    "whisper_n_audio_ctx": (c_int, [c_void_p]),
    "whisper_is_multilingual": (c_int, [c_void_p]),
    "whisper_model_n_vocab": (c_int, [c_void_p]),
    "whisper_model_n_audio_ctx": (c_int, [c_void_p]),
    "whisper_model_n_audio_state": (c_int, [c_void_p]),
    "whisper_model_n_audio_head": (c_int, [c_void_p]),
    "whisper_model_n_audio_layer": (c_int, [c_void_p]),
    "whisper_model_n_text_ctx": (c_int, [c_void_p]),
    "whisper_model_n_text_state": (c_int, [c_void_p]),
    "whisper_model_n_text_head": (c_int, [c_void_p]),
    "whisper_model_n_text_layer": (c_int, [c_void_p]),
    "whisper_model_n_mels": (c_int, [c_void_p]),
    "whisper_model_ftype": (c_int, [c_void_p]),
    "whisper_model_type": (c_int, [c_void_p]),
    "whisper_model_type_readable": (c_char_p, [c_void_p]),
    # tokens
    "whisper_tokenize": (c_int, [c_void_p, c_char_p, POINTER(whisper_token), c_int]),
    "whisper_token_count": (c_int, [c_void_p, c_char_p]),
    "whisper_token_to_str": (c_char_p, [c_void_p, whisper_token]),
    "whisper_token_eot": (whisper_token, [c_void_p]),
    "whisper_token_sot": (whisper_token, [c_void_p]),
    "whisper_token_solm": (whisper_token, [c_void_p]),
    "whisper_token_prev": (whisper_token, [c_void_p]),
    "whisper_token_nosp": (whisper_token, [c_void_p]),
    "whisper_token_not": (whisper_token, [c_void_p]),
    "whisper_token_beg": (whisper_token, [c_void_p]),
    "whisper_token_lang": (whisper_token, [c_void_p, c_int]),
    "whisper_token_translate": (whisper_token, [c_void_p]),
    "whisper_token_transcribe": (whisper_token, [c_void_p]),
    # timings
    "whisper_print_timings": (None, [c_void_p]),
    "whisper_reset_timings": (None, [c_void_p]),
    # standalone
    "whisper_lang_max_id": (c_int, []),
    "whisper_lang_id": (c_int, [c_char_p]),
    "whisper_lang_str": (c_char_p, [c_int]),
    "whisper_lang_str_full": (c_char_p, [c_int]),
    "whisper_print_system_info": (c_char_p, []),
    "whisper_version": (c_char_p, []),
    "whisper_log_set": (None, [LogCallback, c_void_p]),
    # VAD
    "whisper_vad_default_params": (WhisperVadParamsStruct, []),
    "whisper_vad_default_context_params": (WhisperVadContextParamsStruct, []),
    "whisper_vad_init_from_file_with_params": (
        c_void_p, [c_char_p, WhisperVadContextParamsStruct]
    ),
    "whisper_vad_detect_speech": (c_bool, [c_void_p, POINTER(c_float), c_int]),
    "whisper_vad_n_probs": (c_int, [c_void_p]),
    "whisper_vad_probs": (POINTER(c_float), [c_void_p]),
    "whisper_vad_segments_from_probs": (c_void_p, [c_void_p, WhisperVadParamsStruct]),
    "whisper_vad_segments_from_samples": (
        c_void_p, [c_void_p, WhisperVadParamsStruct, POINTER(c_float), c_int]
    ),
    "whisper_vad_segments_n_segments": (c_int, [c_void_p]),
    "whisper_vad_segments_get_segment_t0": (c_float, [c_void_p, c_int]),
    "whisper_vad_segments_get_segment_t1": (c_float, [c_void_p, c_int]),
    "whisper_vad_free_segments": (None, [c_void_p]),
    "whisper_vad_free": (None, [c_void_p]),
}


def _default_names() -> List[str]:
    if sys.platform == "darwin":
        return ["libwhisper.dylib"]
    if sys.platform == "win32":
        return ["whisper.dll", "libwhisper.dll"]
    return ["libwhisper.so", "libwhisper.so.1"]


def _candidates(path: Optional[str]) -> List[str]:
    candidates = []
    if path is not None:
        candidates.append(os.fspath(path))
    env_path = os.environ.get(LIBRARY_ENV_VAR)
    if env_path:
        candidates.append(env_path)
    found = ctypes.util.find_library("whisper")
    if found:
        candidates.append(found)
    candidates.extend(_default_names())
    return candidates


def _declare(lib: ctypes.CDLL) -> None:
    """Attach restype/argtypes to every symbol the library exports.

    Symbols missing from older builds are skipped; calling one of them
    later raises AttributeError from ctypes.
    """
    missing = []
    for name, (restype, argtypes) in _SIGNATURES.items():
        try:
            func = getattr(lib, name)
        except AttributeError:
            missing.append(name)
            continue
        func.restype = restype
        func.argtypes = argtypes
    if missing:
        logger.debug(f"whisper library is missing {len(missing)} symbols: {missing}")


def load_library(path: Optional[str] = None) -> ctypes.CDLL:
    """Load and declare the whisper shared library.

    Args:
        path: Optional explicit path to libwhisper

    Returns:
        The loaded library with all known signatures declared

    Raises:
        OSError: If no candidate could be loaded
    """
    errors = []
    for candidate in _candidates(path):
        try:
            lib = ctypes.CDLL(candidate)
        except OSError as e:
            errors.append(f"{candidate}: {e}")
            continue
        _declare(lib)
        logger.info(f"Loaded whisper library from '{candidate}'")
        return lib
    raise OSError(
        "Unable to load the whisper library. Set "
        f"{LIBRARY_ENV_VAR} or pass an explicit path. Tried: " + "; ".join(errors)
    )


_library: Any = None
_library_lock = threading.Lock()


def get_library() -> Any:
    """Return the active engine library, loading it on first use."""
    global _library
    with _library_lock:
        if _library is None:
            _library = load_library()
        return _library


def set_library(lib: Any) -> Any:
    """Replace the active engine library.

    Objects already created keep the library they were created with.

    Args:
        lib: A loaded library, or any object exposing the same functions
            (None resets to lazy loading)

    Returns:
        The previously active library (may be None)
    """
    global _library
    with _library_lock:
        previous = _library
        _library = lib
        return previous


def check_length(length: int, name: str) -> int:
    """Ensure a buffer length fits in the engine's signed int."""
    if length > INT_MAX:
        raise ValueError(f"{name} is too long for the engine: {length} > {INT_MAX}")
    return length
