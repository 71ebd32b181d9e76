#!/usr/bin/env python3
"""
Audio analysis functionality for Tekno Mix

A FeatureAnalyzer turns decoded PCM into a TrackAnalysis: consensus tempo,
Camelot key, three-band energy profile, locked beat grid, cue points, groove
index and auto-gain. Feature extraction is delegated to a process-wide
backend held by an AnalysisContext; when the essentia backend cannot be
loaded the context drops to reduced (librosa-only) analysis for good.
"""

import math
import logging
import threading
import numpy as np
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional, NamedTuple, Tuple

from .config import AudioConstants, AnalysisConstants
from .errors import BackendUnavailable, AnalysisCrash, TempoDetectionError
from .models import (
    AnalysisMode, BeatGrid, CuePoints, DecodedAudio, EnergyProfile,
    LoopRegion, SourceSeconds, TrackAnalysis, TrackStatus,
)
from .beat_grid import GridLocker
from ..utils.audio_processing import AudioProcessor, FrequencyProcessor
from ..utils.key_matching import to_camelot

logger = logging.getLogger(__name__)


@dataclass
class ExtractedFeatures:
    """Raw output of the full feature backend"""
    bpm: float
    confidence: float
    ticks: np.ndarray
    key: str
    scale: str


class TempoEstimate(NamedTuple):
    """Secondary detector output: tempo and first-beat phase in seconds"""
    bpm: float
    offset: float


class EssentiaBackend:
    """Full feature backend built on essentia's standard algorithms"""

    def __init__(self, es_module):
        self._es = es_module
        self._rhythm = es_module.RhythmExtractor2013(method="multifeature")
        self._key = es_module.KeyExtractor()

    def __call__(self, mono: np.ndarray, sr: int) -> ExtractedFeatures:
        signal = np.ascontiguousarray(mono, dtype=np.float32)

        # RhythmExtractor2013 assumes 44.1 kHz input
        if sr != 44100:
            import librosa
            signal = librosa.resample(signal, orig_sr=sr, target_sr=44100).astype(np.float32)

        bpm, ticks, confidence, _, _ = self._rhythm(signal)
        key, scale, _ = self._key(signal)
        return ExtractedFeatures(
            bpm=float(bpm),
            confidence=float(confidence),
            ticks=np.asarray(ticks, dtype=np.float64),
            key=str(key),
            scale=str(scale),
        )


def load_essentia_backend() -> EssentiaBackend:
    """
    Load the essentia feature backend.

    Raises:
        BackendUnavailable: essentia is not installed or fails to construct
    """
    try:
        import essentia.standard as es
    except ImportError as e:
        raise BackendUnavailable("essentia is not installed", cause=e) from e

    try:
        return EssentiaBackend(es)
    except Exception as e:
        raise BackendUnavailable(f"essentia failed to initialize: {e}", cause=e) from e


def librosa_tempo_detector(decoded: DecodedAudio) -> TempoEstimate:
    """
    Secondary tempo/phase estimate from librosa's dynamic-programming beat tracker.

    Raises:
        TempoDetectionError: no finite positive tempo could be estimated
    """
    import librosa

    try:
        tempo, beat_times = librosa.beat.beat_track(
            y=decoded.mono(), sr=decoded.sample_rate, units="time"
        )
    except Exception as e:
        raise TempoDetectionError(f"Beat tracking failed: {e}", cause=e) from e

    bpm = float(np.atleast_1d(tempo)[0]) if np.size(tempo) else 0.0
    if not math.isfinite(bpm) or bpm <= 0:
        raise TempoDetectionError("Beat tracker returned no usable tempo", data={"bpm": bpm})

    offset = float(beat_times[0]) if len(beat_times) else 0.0
    return TempoEstimate(bpm=bpm, offset=offset)


class AnalysisContext:
    """
    Session-owned feature backend state.

    The backend is loaded lazily, exactly once. Concurrent callers wait on the
    same memoized future; a failed load leaves the context in reduced mode for
    the rest of its life.
    """

    def __init__(self,
                 backend_loader: Callable[[], Callable[[np.ndarray, int], ExtractedFeatures]] = load_essentia_backend,
                 tempo_detector: Callable[[DecodedAudio], TempoEstimate] = librosa_tempo_detector):
        self.backend_loader = backend_loader
        self.tempo_detector = tempo_detector
        self._lock = threading.Lock()
        self._init_future: Optional[Future] = None

    def ensure_initialized(self):
        """Return the full backend, or None when running reduced"""
        with self._lock:
            owner = self._init_future is None
            if owner:
                self._init_future = Future()
            future = self._init_future

        if owner:
            backend = None
            try:
                backend = self.backend_loader()
            except BackendUnavailable as e:
                logger.warning("Feature backend unavailable (%s); using reduced analysis", e.message)
            except Exception:
                logger.warning("Feature backend initialization failed; using reduced analysis",
                               exc_info=True)
            else:
                logger.info("Feature backend initialized")
            finally:
                # Resolved even when interrupted; waiters then see reduced mode
                future.set_result(backend)

        return future.result()

    @property
    def initialized(self) -> bool:
        future = self._init_future
        return future is not None and future.done()

    @property
    def mode(self) -> Optional[AnalysisMode]:
        """Full or Reduced once initialized, None before"""
        if not self.initialized:
            return None
        return AnalysisMode.FULL if self._init_future.result() is not None else AnalysisMode.REDUCED


class FeatureAnalyzer:
    """Handles audio analysis for tempo, key, energy, grid and cue points"""

    def __init__(self, context: Optional[AnalysisContext] = None,
                 target_bpm: float = 125.0,
                 grid_locker: Optional[GridLocker] = None):
        self.context = context or AnalysisContext()
        self.target_bpm = target_bpm
        self.grid_locker = grid_locker or GridLocker()

    def analyze(self, decoded: DecodedAudio, name: str = "track") -> TrackAnalysis:
        """
        Analyze one decoded track.

        Never raises for analysis problems: a crash in the full backend is
        logged and the track is re-analyzed with the reduced backend.
        """
        backend = self.context.ensure_initialized()

        if backend is not None:
            try:
                return self._analyze_full(backend, decoded, name)
            except AnalysisCrash as e:
                logger.error("%s; retrying with reduced analysis", e.message, exc_info=True)

        return self._analyze_reduced(decoded, name)

    def _analyze_full(self, backend, decoded: DecodedAudio, name: str) -> TrackAnalysis:
        """Full-backend path with a consensus check against the secondary detector"""
        try:
            mono = decoded.mono()
            features = backend(mono, decoded.sample_rate)

            confidence = self._normalize_confidence(features.confidence)
            key = to_camelot(features.key, features.scale)
            energy = self.compute_energy_profile(mono, decoded.sample_rate)

            bpm, offset, confidence = self._consensus(features.bpm, confidence, decoded, name)
        except Exception as e:
            raise AnalysisCrash(f"Full analysis crashed for {name}: {e}",
                                data={"track": name}, cause=e) from e

        return self._finalize(
            decoded, name, bpm, confidence, key, energy,
            onsets=features.ticks, offset=offset, mode=AnalysisMode.FULL,
        )

    def _analyze_reduced(self, decoded: DecodedAudio, name: str) -> TrackAnalysis:
        """Reduced path: detector tempo, broadband energy, generic key"""
        logger.info("Analyzing %s in reduced mode", name)

        bpm = AudioConstants.FALLBACK_BPM
        offset = None
        confidence = AnalysisConstants.REDUCED_CONFIDENCE

        try:
            estimate = self.context.tempo_detector(decoded)
            bpm, offset = estimate.bpm, estimate.offset
            confidence = AnalysisConstants.REDUCED_DETECTED_CONFIDENCE
        except TempoDetectionError as e:
            logger.warning("Tempo detection failed for %s, defaulting to %.0f BPM: %s",
                           name, bpm, e.message)

        broadband = AudioProcessor.rms_profile(decoded.mono())
        energy = EnergyProfile(low=broadband, mid=broadband, high=broadband)

        return self._finalize(
            decoded, name, bpm, confidence, AnalysisConstants.REDUCED_KEY, energy,
            onsets=(), offset=offset, mode=AnalysisMode.REDUCED,
        )

    @staticmethod
    def _normalize_confidence(raw: float) -> float:
        if not raw or not math.isfinite(raw) or raw <= 0:
            return AnalysisConstants.DEFAULT_EXTRACTOR_CONFIDENCE
        return min(raw / AnalysisConstants.EXTRACTOR_CONFIDENCE_SCALE, 1.0)

    def _consensus(self, primary_bpm: float, confidence: float,
                   decoded: DecodedAudio, name: str) -> Tuple[float, Optional[float], float]:
        """
        Reconcile the extractor tempo with the secondary detector.

        Returns (bpm, phase offset or None, confidence).
        """
        try:
            estimate = self.context.tempo_detector(decoded)
        except TempoDetectionError as e:
            logger.warning("Detector refinement failed for %s: %s", name, e.message)
            return primary_bpm, None, confidence

        detected = estimate.bpm
        tolerance = AnalysisConstants.OCTAVE_TOLERANCE_BPM

        if abs(detected - primary_bpm) < AnalysisConstants.AGREEMENT_BPM:
            return ((detected + primary_bpm) / 2.0, estimate.offset,
                    min(confidence + AnalysisConstants.AGREEMENT_BOOST, AnalysisConstants.MAX_CONFIDENCE))

        if abs(detected * 2 - primary_bpm) < tolerance or abs(detected / 2 - primary_bpm) < tolerance:
            return (primary_bpm, estimate.offset,
                    max(confidence, AnalysisConstants.OCTAVE_CONFIDENCE_FLOOR))

        logger.warning("BPM mismatch for %s: extractor %.2f vs detector %.2f",
                       name, primary_bpm, detected)
        return (primary_bpm, None,
                max(confidence - AnalysisConstants.DISAGREEMENT_PENALTY, AnalysisConstants.MIN_CONFIDENCE))

    @staticmethod
    def fold_tempo(bpm: float, confidence: float) -> Tuple[float, float]:
        """Octave-correct into the dance range, or fall back to 125 BPM"""
        if math.isfinite(bpm):
            if bpm < AudioConstants.FOLD_UP_BELOW_BPM:
                bpm *= 2
            if bpm > AudioConstants.FOLD_DOWN_ABOVE_BPM:
                bpm /= 2
        if (not math.isfinite(bpm) or bpm == 0 or bpm < AudioConstants.MIN_VALID_BPM
                or bpm > AudioConstants.FOLD_DOWN_ABOVE_BPM):
            return AudioConstants.FALLBACK_BPM, AudioConstants.FALLBACK_CONFIDENCE
        return bpm, confidence

    def _finalize(self, decoded: DecodedAudio, name: str, bpm: float, confidence: float,
                  key: str, energy: EnergyProfile, onsets, offset: Optional[float],
                  mode: AnalysisMode) -> TrackAnalysis:
        """Post-processing shared by both backends"""
        bpm, confidence = self.fold_tempo(bpm, confidence)
        duration = decoded.duration

        grid = self.grid_locker.lock(onsets, bpm, duration, external_offset=offset)
        cues = self.detect_cue_points(grid, energy, duration)

        analysis = TrackAnalysis(
            name=name,
            duration=duration,
            bpm=round(bpm, 2),
            key=key,
            beat_grid=grid,
            energy_profile=energy,
            cue_points=cues,
            gain_factor=AudioProcessor.auto_gain(decoded.mono()),
            groove_index=self.groove_index(energy.low),
            confidence=float(confidence),
            status=TrackStatus.READY,
            mode=mode,
            target_bpm=self.target_bpm,
        )
        logger.debug("%s: %.2f BPM, key %s, confidence %.2f (%s)",
                     name, analysis.bpm, key, analysis.confidence, mode.value)
        return analysis

    @staticmethod
    def compute_energy_profile(mono: np.ndarray, sr: int) -> EnergyProfile:
        """Band-split RMS profile; empty when too short for every bucket to hold a sample"""
        if len(mono) < AudioConstants.ENERGY_BUCKETS:
            return EnergyProfile.empty()

        bands = FrequencyProcessor.separate_frequency_bands(mono.astype(np.float64), sr)
        broadband = AudioProcessor.rms_profile(mono)
        return EnergyProfile(
            low=AudioProcessor.rms_profile(bands['low']) if 'low' in bands else broadband,
            mid=AudioProcessor.rms_profile(bands['mid']) if 'mid' in bands else broadband,
            high=AudioProcessor.rms_profile(bands['high']) if 'high' in bands else broadband,
        )

    @staticmethod
    def groove_index(low_energy: np.ndarray) -> int:
        """Population std of the low band, scaled so 0.1 maps to 100"""
        if len(low_energy) == 0:
            return 0
        std = float(np.std(low_energy))
        groove = min(std / AnalysisConstants.GROOVE_STD_SCALE * 100.0, 100.0)
        return int(max(0, round(groove)))

    @staticmethod
    def detect_cue_points(grid: BeatGrid, energy: EnergyProfile, duration: float) -> CuePoints:
        """
        Mix-in point, energy-drop outro and a 4-bar extension loop.

        Short tracks are clamped so every cue stays inside [0, duration] and
        the loop never starts before the mix-in point. On tracks too short
        to hold a 4-bar loop after the mix-in point (under about 8 s) the
        loop starts exactly at the mix-in point, so only
        start <= loop start holds there.
        """
        c = AnalysisConstants

        if len(energy) == 0:
            end = max(0.0, duration - c.OUTRO_DEFAULT_LEAD)
            loop_start = max(0.0, duration - c.EMPTY_LOOP_LEAD)
            return CuePoints(
                start=SourceSeconds(0.0),
                end=SourceSeconds(end),
                loop_region=LoopRegion(SourceSeconds(min(loop_start, end)), SourceSeconds(end)),
            )

        start = float(grid.downbeats[0]) if len(grid.downbeats) else 0.0

        low = np.asarray(energy.low)
        samples = len(low)
        time_per_sample = duration / samples

        baseline_slice = low[int(math.floor(samples * c.BASELINE_START)):int(math.floor(samples * c.SEARCH_START))]
        baseline = float(np.mean(baseline_slice)) if len(baseline_slice) else 0.5
        threshold = baseline * c.DROP_RATIO

        outro = duration - c.OUTRO_DEFAULT_LEAD
        for i in range(int(math.floor(samples * c.SEARCH_START)), samples - 5):
            if (low[i] + low[i + 1] + low[i + 2]) / 3.0 < threshold:
                outro = i * time_per_sample
                break

        default_snap = float(grid.downbeats[-1]) if len(grid.downbeats) else duration
        end = grid.nearest_downbeat(outro, default_snap)
        if end > duration - c.OUTRO_MIN_LEAD:
            end = duration - c.OUTRO_MIN_LEAD
        if end < duration * c.OUTRO_FLOOR:
            end = duration * c.OUTRO_OVERRIDE

        loop_length = c.LOOP_BARS * AudioConstants.BEATS_PER_BAR * grid.beat_interval
        loop_start = end - loop_length
        loop_end = end

        snapped = grid.nearest_downbeat(loop_start, loop_start)
        if abs(snapped - loop_start) < c.LOOP_SNAP_WINDOW:
            loop_start = snapped

        if loop_start < start:
            loop_start = max(0.0, duration - c.LOOP_FALLBACK_LEAD)
        loop_start = max(loop_start, start)
        if loop_end <= loop_start:
            loop_end = duration

        return CuePoints(
            start=SourceSeconds(start),
            end=SourceSeconds(loop_end),
            loop_region=LoopRegion(SourceSeconds(loop_start), SourceSeconds(loop_end)),
        )
