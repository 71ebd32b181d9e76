#!/usr/bin/env python3
"""
Data models for Tekno Mix

Two time bases appear throughout: SourceSeconds (positions in the original,
unstretched track) and RenderSeconds (positions in a stretched buffer or on
the mix timeline). Converting between them always goes through the tempo
ratio applied to that track.
"""

import numpy as np
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, List, NewType, Tuple

from .config import AudioConstants, MixStyle, TransitionTechnique


SourceSeconds = NewType("SourceSeconds", float)
RenderSeconds = NewType("RenderSeconds", float)


def to_render_time(t: SourceSeconds, tempo: float) -> RenderSeconds:
    """Map a source-track position into stretched time (tempo = target/original)"""
    return RenderSeconds(t / tempo)


def _frozen_array(values) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


class TrackStatus(Enum):
    """Analysis lifecycle of a track"""
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    READY = "READY"
    ERROR = "ERROR"


class AnalysisMode(Enum):
    """Which feature backend produced an analysis"""
    FULL = "full"
    REDUCED = "reduced"


@dataclass(frozen=True)
class BeatGrid:
    """Regular beat/downbeat grid spanning a whole track (source time)"""
    bpm: float
    offset_ms: float
    beats: np.ndarray
    downbeats: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "beats", _frozen_array(self.beats))
        object.__setattr__(self, "downbeats", _frozen_array(self.downbeats))

    @property
    def beat_interval(self) -> float:
        """Seconds per beat"""
        return 60.0 / self.bpm

    def nearest_downbeat(self, t: float, default: float) -> float:
        """Downbeat closest to t, or default when the grid has none"""
        if len(self.downbeats) == 0:
            return default
        idx = int(np.argmin(np.abs(self.downbeats - t)))
        return float(self.downbeats[idx])


@dataclass(frozen=True)
class EnergyProfile:
    """RMS energy per time bucket for three frequency bands"""
    low: np.ndarray
    mid: np.ndarray
    high: np.ndarray

    def __post_init__(self):
        for name in ("low", "mid", "high"):
            object.__setattr__(self, name, _frozen_array(getattr(self, name)))
        if not (len(self.low) == len(self.mid) == len(self.high)):
            raise ValueError("Energy bands must have identical length")

    @classmethod
    def empty(cls) -> "EnergyProfile":
        return cls(low=[], mid=[], high=[])

    def __len__(self) -> int:
        return len(self.low)


@dataclass(frozen=True)
class LoopRegion:
    start: SourceSeconds
    end: SourceSeconds


@dataclass(frozen=True)
class CuePoints:
    """Mix-in, mix-out and extension loop positions (source time)"""
    start: SourceSeconds
    end: SourceSeconds
    loop_region: LoopRegion


@dataclass(frozen=True)
class TrackAnalysis:
    """Immutable analysis result for one track"""
    name: str
    duration: float
    bpm: float
    key: str
    beat_grid: Optional[BeatGrid]
    energy_profile: EnergyProfile
    cue_points: Optional[CuePoints]
    gain_factor: float
    groove_index: int
    confidence: float
    status: TrackStatus
    mode: Optional[AnalysisMode] = None
    target_bpm: float = 125.0
    error: Optional[str] = None

    @classmethod
    def failed(cls, name: str, message: str) -> "TrackAnalysis":
        """Terminal Error record for a track that could not be analyzed"""
        return cls(
            name=name,
            duration=0.0,
            bpm=0.0,
            key="",
            beat_grid=None,
            energy_profile=EnergyProfile.empty(),
            cue_points=None,
            gain_factor=1.0,
            groove_index=0,
            confidence=0.0,
            status=TrackStatus.ERROR,
            error=message,
        )

    @property
    def is_ready(self) -> bool:
        return self.status is TrackStatus.READY and self.bpm > 0

    @property
    def playback_ratio(self) -> float:
        """Tempo ratio needed to reach the target BPM"""
        if self.bpm <= 0:
            return 1.0
        return self.target_bpm / self.bpm

    @property
    def groove_description(self) -> str:
        if self.groove_index < 30:
            return "Mechanical / Straight"
        if self.groove_index < 60:
            return "Natural / Loose"
        if self.groove_index < 85:
            return "Swing / House"
        return "Heavy Groove / Syncopated"


@dataclass
class DecodedAudio:
    """Decoded PCM audio, shaped (channels, samples)"""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        if self.samples.ndim == 1:
            self.samples = self.samples[np.newaxis, :]
        if self.sample_rate <= 0:
            raise ValueError("Sample rate must be positive")

    @property
    def duration(self) -> float:
        """Duration in seconds"""
        return self.samples.shape[-1] / self.sample_rate

    @property
    def channels(self) -> int:
        return self.samples.shape[0]

    def mono(self) -> np.ndarray:
        """First channel, as fed to the feature backends"""
        return self.samples[0]


@dataclass
class StretchedTrack:
    """A track resampled to the target tempo, owned by one mix request"""
    samples: np.ndarray
    sample_rate: int
    tempo: float
    analysis: TrackAnalysis

    @property
    def duration(self) -> RenderSeconds:
        return RenderSeconds(self.samples.shape[-1] / self.sample_rate)

    def render_time(self, t: SourceSeconds) -> RenderSeconds:
        return to_render_time(t, self.tempo)


@dataclass(frozen=True)
class TimelineEvent:
    """Placement of one track on the mix timeline (render time)"""
    track_index: int
    mix_start_time: RenderSeconds
    buffer_offset_start: RenderSeconds
    buffer_offset_end: RenderSeconds
    buffer_loop_start: RenderSeconds
    buffer_loop_end: RenderSeconds
    overlap_time: RenderSeconds
    technique: TransitionTechnique
    gain: float

    @property
    def duration(self) -> RenderSeconds:
        return RenderSeconds(self.buffer_offset_end - self.buffer_offset_start)

    @property
    def mix_end_time(self) -> RenderSeconds:
        return RenderSeconds(self.mix_start_time + self.duration)

    @property
    def has_loop_region(self) -> bool:
        return self.buffer_loop_end > self.buffer_loop_start


@dataclass
class MixTimeline:
    """Ordered events plus the buffers they play from"""
    events: List[TimelineEvent]
    tracks: List[StretchedTrack]
    total_duration: RenderSeconds

    @property
    def transition_points(self) -> List[float]:
        return [float(e.mix_start_time) for e in self.events]

    @property
    def techniques(self) -> List[TransitionTechnique]:
        return [e.technique for e in self.events]


@dataclass
class MixResult:
    """Result of a mix generation operation"""
    wav_bytes: bytes
    duration: float
    style: MixStyle
    transition_points: List[float] = field(default_factory=list)
    techniques_used: List[TransitionTechnique] = field(default_factory=list)
    tracks: List[TrackAnalysis] = field(default_factory=list)
    sample_rate: int = AudioConstants.RENDER_SAMPLE_RATE

    @property
    def duration_minutes(self) -> float:
        """Duration in minutes"""
        return self.duration / 60.0

    @property
    def file_size_mb(self) -> float:
        return len(self.wav_bytes) / (1024 * 1024)

    @property
    def boundaries(self) -> List[Tuple[float, TransitionTechnique]]:
        """(incoming track start, technique) for every boundary between consecutive tracks"""
        return list(zip(self.transition_points[1:], self.techniques_used[:-1]))

    def write(self, path) -> Path:
        """Persist the rendered WAV"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.wav_bytes)
        return path
