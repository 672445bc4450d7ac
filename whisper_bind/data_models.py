"""Core data models for whisper-bind.

This module defines the plain value types used to configure the engine
(sampling strategies, DTW alignment modes) and the small records handed
back to callers (callback payloads, VAD segments).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple, Union

from . import _native


@dataclass
class Greedy:
    """Greedy sampling, similar to OpenAI's GreedyDecoder.

    Attributes:
        best_of: Number of candidates when sampling with non-zero temperature
    """
    best_of: int = 1


@dataclass
class BeamSearch:
    """Beam search sampling, similar to OpenAI's BeamSearchDecoder.

    Attributes:
        beam_size: Number of beams
        patience: Beam search patience; unused by the engine, keep at -1.0
    """
    beam_size: int = 5
    patience: float = -1.0


SamplingStrategy = Union[Greedy, BeamSearch]


class DtwModelPreset(Enum):
    """Alignment head presets for the official Whisper checkpoints."""
    TINY_EN = _native.WHISPER_AHEADS_TINY_EN
    TINY = _native.WHISPER_AHEADS_TINY
    BASE_EN = _native.WHISPER_AHEADS_BASE_EN
    BASE = _native.WHISPER_AHEADS_BASE
    SMALL_EN = _native.WHISPER_AHEADS_SMALL_EN
    SMALL = _native.WHISPER_AHEADS_SMALL
    MEDIUM_EN = _native.WHISPER_AHEADS_MEDIUM_EN
    MEDIUM = _native.WHISPER_AHEADS_MEDIUM
    LARGE_V1 = _native.WHISPER_AHEADS_LARGE_V1
    LARGE_V2 = _native.WHISPER_AHEADS_LARGE_V2
    LARGE_V3 = _native.WHISPER_AHEADS_LARGE_V3
    LARGE_V3_TURBO = _native.WHISPER_AHEADS_LARGE_V3_TURBO


@dataclass(frozen=True)
class DtwAhead:
    """A single alignment head: text layer index and head index."""
    n_text_layer: int
    n_head: int


@dataclass(frozen=True)
class DtwDisabled:
    """DTW token timestamps are off."""


@dataclass(frozen=True)
class DtwTopMost:
    """Use all heads from the n_top top-most text layers.

    Attributes:
        n_top: Number of top text layers to take heads from
    """
    n_top: int


@dataclass(frozen=True)
class DtwPreset:
    """Use the alignment heads known for an official checkpoint."""
    model_preset: DtwModelPreset


@dataclass(frozen=True)
class DtwCustom:
    """Use an explicit list of alignment heads.

    Attributes:
        aheads: (text layer, head) pairs; plain tuples are accepted
    """
    aheads: Tuple[DtwAhead, ...] = field(default_factory=tuple)

    def __post_init__(self):
        heads = tuple(
            a if isinstance(a, DtwAhead) else DtwAhead(*a) for a in self.aheads
        )
        object.__setattr__(self, "aheads", heads)


DtwMode = Union[DtwDisabled, DtwTopMost, DtwPreset, DtwCustom]


@dataclass
class SegmentCallbackData:
    """Snapshot of a freshly decoded segment delivered to a segment callback.

    Attributes:
        segment: Index of the segment within the state
        start_timestamp: Start time in centiseconds
        end_timestamp: End time in centiseconds
        text: Segment text
    """
    segment: int
    start_timestamp: int
    end_timestamp: int
    text: str


@dataclass(frozen=True)
class WhisperVadSegment:
    """A detected speech interval.

    Attributes:
        start: Start timestamp in centiseconds
        end: End timestamp in centiseconds
    """
    start: float
    end: float
