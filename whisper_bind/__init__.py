"""whisper-bind: Safe Python bindings for whisper.cpp.

Loads Whisper models through the whisper.cpp shared library, runs the
transcription pipeline and exposes the results as segments and tokens.
Engine resources are freed exactly once, engine error codes become
exceptions, and user callbacks can never crash the engine.

Example:
    >>> from whisper_bind import BeamSearch, FullParams, WhisperContext
    >>> ctx = WhisperContext("ggml-tiny.bin")
    >>> state = ctx.create_state()
    >>> params = FullParams(BeamSearch(beam_size=5, patience=-1.0))
    >>> params.set_language("en")
    >>> state.full(params, samples)
    >>> for segment in state:
    ...     print(f"[{segment.start_timestamp()} - {segment.end_timestamp()}] {segment}")
"""

from ._native import get_library, load_library, set_library
from .context import ContextRef, WhisperContext, WhisperInnerContext
from .data_models import (
    BeamSearch,
    DtwAhead,
    DtwCustom,
    DtwDisabled,
    DtwModelPreset,
    DtwPreset,
    DtwTopMost,
    Greedy,
    SegmentCallbackData,
    WhisperVadSegment,
)
from .errors import (
    FailedToDecode,
    FailedToEncode,
    GenericError,
    HalfSampleMissing,
    InitError,
    InputOutputLengthMismatch,
    InvalidMelBands,
    InvalidThreadCount,
    InvalidUtf8Error,
    NoSamples,
    NullPointerError,
    UnableToCalculateEvaluation,
    UnableToCalculateSpectrogram,
    WhisperError,
)
from .logging_hooks import install_logging_hooks
from .params import FullParams, WhisperContextParameters
from .standalone import (
    get_lang_id,
    get_lang_max_id,
    get_lang_str,
    get_lang_str_full,
    get_version,
    print_system_info,
)
from .state import WhisperSegment, WhisperState, WhisperStateSegmentIterator, WhisperToken
from .utilities import convert_integer_to_float_audio, convert_stereo_to_mono_audio
from .vad import (
    WhisperVadContext,
    WhisperVadContextParams,
    WhisperVadParams,
    WhisperVadSegments,
)

__version__ = "0.1.0"

__all__ = [
    "BeamSearch",
    "ContextRef",
    "DtwAhead",
    "DtwCustom",
    "DtwDisabled",
    "DtwModelPreset",
    "DtwPreset",
    "DtwTopMost",
    "FailedToDecode",
    "FailedToEncode",
    "FullParams",
    "GenericError",
    "Greedy",
    "HalfSampleMissing",
    "InitError",
    "InputOutputLengthMismatch",
    "InvalidMelBands",
    "InvalidThreadCount",
    "InvalidUtf8Error",
    "NoSamples",
    "NullPointerError",
    "SegmentCallbackData",
    "UnableToCalculateEvaluation",
    "UnableToCalculateSpectrogram",
    "WhisperContext",
    "WhisperContextParameters",
    "WhisperError",
    "WhisperInnerContext",
    "WhisperSegment",
    "WhisperState",
    "WhisperStateSegmentIterator",
    "WhisperToken",
    "WhisperVadContext",
    "WhisperVadContextParams",
    "WhisperVadParams",
    "WhisperVadSegment",
    "WhisperVadSegments",
    "convert_integer_to_float_audio",
    "convert_stereo_to_mono_audio",
    "get_lang_id",
    "get_lang_max_id",
    "get_lang_str",
    "get_lang_str_full",
    "get_library",
    "get_version",
    "install_logging_hooks",
    "load_library",
    "print_system_info",
    "set_library",
]
