"""Error taxonomy for whisper-bind.

Every failure raised by the binding is a subclass of WhisperError. The
helpers at the bottom of this module translate the integer return codes
of the engine into these exceptions.
"""

from typing import Dict, Optional, Type


class WhisperError(Exception):
    """Base class for all errors raised by whisper-bind."""


class InitError(WhisperError):
    """The engine returned a null pointer from a model or state constructor."""

    def __init__(self, message: str = "failed to initialize whisper context or state"):
        super().__init__(message)


class NullPointerError(WhisperError):
    """The engine returned null where a non-null result was required."""

    def __init__(self, message: str = "engine returned a null pointer"):
        super().__init__(message)


class InvalidUtf8Error(WhisperError):
    """A byte string returned by the engine is not valid UTF-8.

    Attributes:
        valid_up_to: Number of leading bytes that decoded cleanly
        error_len: Length of the invalid sequence, or None if the input
            ended in the middle of a character
    """

    def __init__(self, valid_up_to: int, error_len: Optional[int] = None):
        self.valid_up_to = valid_up_to
        self.error_len = error_len
        super().__init__(
            f"invalid UTF-8 detected in a string from whisper.cpp "
            f"(valid up to byte {valid_up_to})"
        )

    @classmethod
    def from_decode_error(cls, err: UnicodeDecodeError) -> "InvalidUtf8Error":
        truncated = err.end >= len(err.object)
        return cls(err.start, None if truncated else err.end - err.start)


class InputOutputLengthMismatch(WhisperError, ValueError):
    """Input and output buffers of a conversion have incompatible lengths."""

    def __init__(self, input_len: int, output_len: int):
        self.input_len = input_len
        self.output_len = output_len
        super().__init__(
            f"input and output lengths must match: input_len={input_len}, "
            f"output_len={output_len}"
        )


class HalfSampleMissing(WhisperError, ValueError):
    """Interleaved stereo input has an odd number of samples."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(
            f"stereo input must have an even number of samples, got {length}"
        )


class InvalidThreadCount(WhisperError, ValueError):
    def __init__(self, threads: Optional[int] = None):
        self.threads = threads
        message = "thread count must be at least 1"
        if threads is not None:
            message += f", got {threads}"
        super().__init__(message)


class InvalidMelBands(WhisperError):
    def __init__(self):
        super().__init__("invalid number of mel bands")


class UnableToCalculateSpectrogram(WhisperError):
    def __init__(self):
        super().__init__("unable to calculate spectrogram")


class UnableToCalculateEvaluation(WhisperError):
    def __init__(self):
        super().__init__("unable to calculate evaluation")


class FailedToEncode(WhisperError):
    def __init__(self):
        super().__init__("failed to encode audio features")


class FailedToDecode(WhisperError):
    def __init__(self):
        super().__init__("failed to decode tokens")


class NoSamples(WhisperError, ValueError):
    """full() was called with an empty sample buffer."""

    def __init__(self):
        super().__init__("input sample buffer was empty")


class GenericError(WhisperError):
    """Catch-all for engine return codes without a specific mapping.

    Attributes:
        code: Raw integer returned by the engine
    """

    def __init__(self, code: int):
        self.code = code
        super().__init__(f"generic whisper error, code {code}")


# Engine return code -> exception, per call family. 0 is always success.
MEL_ERRORS: Dict[int, Type[WhisperError]] = {-1: UnableToCalculateSpectrogram}
SET_MEL_ERRORS: Dict[int, Type[WhisperError]] = {-1: InvalidMelBands}
EVAL_ERRORS: Dict[int, Type[WhisperError]] = {-1: UnableToCalculateEvaluation}
FULL_ERRORS: Dict[int, Type[WhisperError]] = {
    -1: UnableToCalculateSpectrogram,
    7: FailedToEncode,
    8: FailedToDecode,
}


def check_return(code: int, mapping: Dict[int, Type[WhisperError]]) -> int:
    """Raise the exception mapped to a non-zero engine return code.

    Args:
        code: Integer returned by the engine
        mapping: Specific exceptions for known codes

    Returns:
        The code itself (always 0) when the call succeeded

    Raises:
        WhisperError: The mapped exception, or GenericError for any other
            non-zero code
    """
    if code == 0:
        return code
    error_cls = mapping.get(code)
    if error_cls is not None:
        raise error_cls()
    raise GenericError(code)


def check_threads(threads: int) -> None:
    """Reject thread counts below one before the engine is invoked."""
    if threads < 1:
        raise InvalidThreadCount(threads)
