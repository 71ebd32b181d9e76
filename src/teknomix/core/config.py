#!/usr/bin/env python3
"""
Configuration and constants for Tekno Mix
Centralized configuration to follow DRY principles
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum

from .errors import ConfigurationError


class MixStyle(Enum):
    """Artist archetypes that drive transition selection"""
    CAROLA = "Marco Carola (Minimal/Groove)"
    MILLS = "Jeff Mills (Purist/Techno)"
    GARNIER = "Laurent Garnier (Storyteller)"
    SANCHEZ = "Roger Sanchez (House/Vocal)"
    SOLOMUN = "Solomun (Melodic/Build)"
    SIMS = "Ben Sims (Tribal/Cuts)"
    MAY = "Derrick May (Detroit/Rhythm)"

    @classmethod
    def from_name(cls, name: str) -> "MixStyle":
        """Resolve a style from its member name ("carola") or display label"""
        for style in cls:
            if name.strip().upper() == style.name or name == style.value:
                return style
        raise ConfigurationError(f"Unknown mix style: {name}",
                                 data={"choices": [s.name.lower() for s in cls]})


class TransitionTechnique(Enum):
    """Transition techniques available at a track boundary"""
    PHRASE_MIXING = "Phrase Mixing"
    HARMONIC_MIXING = "Harmonic Mixing"
    SLOW_EQ_BLEND = "Slow EQ Blending"
    BASS_SWAP = "Bass Swap"
    FILTER_SWEEP = "Filter Sweep"
    ECHO_OUT = "Echo Out"
    REVERB_WASH = "Reverb Wash"
    DELAY_THROW = "Delay Throw"
    DROP_SWAP = "Drop Swap"
    LONG_BLEND = "Long Blend/Overlay"
    HARD_CUT = "Hard Cut"
    LOOP_ECHO = "Looping & Echo"
    ACAPELLA_LAYER = "Vocal Layering"


# Technique used for the last track and whenever a draw falls through
DEFAULT_TECHNIQUE = TransitionTechnique.SLOW_EQ_BLEND


# Overlap length (bars) per technique; missing techniques use the configured default
TECHNIQUE_OVERLAP_BARS = {
    TransitionTechnique.HARD_CUT: 0,
    TransitionTechnique.ECHO_OUT: 4,
    TransitionTechnique.DROP_SWAP: 8,
    TransitionTechnique.LOOP_ECHO: 8,
    TransitionTechnique.FILTER_SWEEP: 16,
    TransitionTechnique.BASS_SWAP: 32,
    TransitionTechnique.SLOW_EQ_BLEND: 32,
    TransitionTechnique.PHRASE_MIXING: 32,
    TransitionTechnique.LONG_BLEND: 64,
}


# Weighted transition profiles per artist archetype
STYLE_PROFILES = {
    MixStyle.CAROLA: [
        (TransitionTechnique.LONG_BLEND, 0.5),
        (TransitionTechnique.BASS_SWAP, 0.4),
        (TransitionTechnique.SLOW_EQ_BLEND, 0.1),
    ],
    MixStyle.MILLS: [
        (TransitionTechnique.HARD_CUT, 0.4),
        (TransitionTechnique.LOOP_ECHO, 0.3),
        (TransitionTechnique.DROP_SWAP, 0.2),
        (TransitionTechnique.FILTER_SWEEP, 0.1),
    ],
    MixStyle.GARNIER: [
        (TransitionTechnique.FILTER_SWEEP, 0.5),
        (TransitionTechnique.SLOW_EQ_BLEND, 0.3),
        (TransitionTechnique.LONG_BLEND, 0.2),
    ],
    MixStyle.SANCHEZ: [
        (TransitionTechnique.PHRASE_MIXING, 0.4),
        (TransitionTechnique.LOOP_ECHO, 0.3),
        (TransitionTechnique.SLOW_EQ_BLEND, 0.3),
    ],
    MixStyle.SOLOMUN: [
        (TransitionTechnique.LONG_BLEND, 0.6),
        (TransitionTechnique.DROP_SWAP, 0.3),
        (TransitionTechnique.BASS_SWAP, 0.1),
    ],
    MixStyle.SIMS: [
        (TransitionTechnique.HARD_CUT, 0.3),
        (TransitionTechnique.DROP_SWAP, 0.4),
        (TransitionTechnique.ECHO_OUT, 0.3),
    ],
    MixStyle.MAY: [
        (TransitionTechnique.BASS_SWAP, 0.4),
        (TransitionTechnique.SLOW_EQ_BLEND, 0.4),
        (TransitionTechnique.FILTER_SWEEP, 0.2),
    ],
}


@dataclass(frozen=True)
class MixConfiguration:
    """Complete mix generation configuration"""
    style: MixStyle = MixStyle.CAROLA
    target_bpm: float = 125.0
    transition_length_bars: int = 32

    # System settings
    seed: Optional[int] = None
    max_workers: Optional[int] = None

    def validate(self):
        """Validate complete configuration"""
        if not isinstance(self.style, MixStyle):
            raise ConfigurationError(f"Unknown mix style: {self.style}")
        if self.target_bpm <= 0:
            raise ConfigurationError("Target BPM must be positive")
        if self.transition_length_bars not in AudioConstants.ALLOWED_TRANSITION_BARS:
            raise ConfigurationError(
                f"Transition length must be one of {AudioConstants.ALLOWED_TRANSITION_BARS} bars"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("Worker count must be at least 1")

    @property
    def bar_duration(self) -> float:
        """Seconds per 4/4 bar at the target tempo"""
        return AudioConstants.BEATS_PER_BAR * 60.0 / self.target_bpm


class AudioConstants:
    """Audio processing constants"""
    RENDER_SAMPLE_RATE = 44100
    RENDER_CHANNELS = 2
    BEATS_PER_BAR = 4
    ALLOWED_TRANSITION_BARS = (4, 8, 16, 32, 64)

    # Beat grid
    PHASE_SAMPLE_SIZE = 32

    # Tempo folding
    FOLD_UP_BELOW_BPM = 80.0
    FOLD_DOWN_ABOVE_BPM = 160.0
    MIN_VALID_BPM = 60.0
    FALLBACK_BPM = 125.0
    FALLBACK_CONFIDENCE = 0.1

    # Frequency bands (Hz)
    LOW_FREQ_CUTOFF = 200.0
    MID_FREQ_HIGH_CUTOFF = 2000.0

    # Energy / loudness
    ENERGY_BUCKETS = 200
    GAIN_STRIDE = 200
    TARGET_RMS = 0.20
    MIN_GAIN = 0.5
    MAX_GAIN = 2.0
    STRETCH_IDENTITY_TOLERANCE = 0.001

    # Overlap-add stretcher
    STRETCH_WINDOW = 4096
    STRETCH_OVERLAP = 2


class AnalysisConstants:
    """Feature analysis tuning"""
    AGREEMENT_BPM = 2.0
    OCTAVE_TOLERANCE_BPM = 3.0
    AGREEMENT_BOOST = 0.2
    MAX_CONFIDENCE = 0.99
    OCTAVE_CONFIDENCE_FLOOR = 0.7
    DISAGREEMENT_PENALTY = 0.2
    MIN_CONFIDENCE = 0.1
    REDUCED_CONFIDENCE = 0.3
    REDUCED_DETECTED_CONFIDENCE = 0.6
    DEFAULT_EXTRACTOR_CONFIDENCE = 0.5
    # essentia multifeature beat confidence tops out at 5.32
    EXTRACTOR_CONFIDENCE_SCALE = 5.32
    REDUCED_KEY = "12A"

    GROOVE_STD_SCALE = 0.1

    # Cue detection
    OUTRO_DEFAULT_LEAD = 15.0
    OUTRO_MIN_LEAD = 5.0
    LOOP_FALLBACK_LEAD = 30.0
    EMPTY_LOOP_LEAD = 20.0
    BASELINE_START = 0.2
    SEARCH_START = 0.7
    DROP_RATIO = 0.6
    OUTRO_FLOOR = 0.6
    OUTRO_OVERRIDE = 0.9
    LOOP_BARS = 4
    LOOP_SNAP_WINDOW = 2.0


class RenderConstants:
    """Channel strip, bus and master settings"""
    LOW_SHELF_FREQ = 200.0
    HIGH_SHELF_FREQ = 2500.0
    MID_PEAK_FREQ = 1000.0
    MID_PEAK_Q = 0.5
    FILTER_OPEN_FREQ = 22000.0
    FILTER_DEFAULT_Q = 0.7
    AUTOMATION_BLOCK = 512

    DELAY_TIME = 0.36
    DELAY_FEEDBACK = 0.5
    DELAY_FILTER_FREQ = 1000.0

    MASTER_GAIN = 0.95
    LIMITER_THRESHOLD_DB = -2.0
    LIMITER_RATIO = 12.0
    LIMITER_ATTACK = 0.003
    LIMITER_RELEASE = 0.25
    LIMITER_DETECTOR_BLOCK = 64

    SAFETY_TAIL = 10.0
    LOOP_ECHO_TAIL = 16.0
    LOOP_TAIL = 8.0


class FileConstants:
    """File handling constants"""
    SUPPORTED_FORMATS = ['.wav', '.flac', '.mp3', '.ogg', '.aiff', '.aif', '.m4a']
    DEFAULT_OUTPUT_NAME = 'tekno_mix.wav'
