#!/usr/bin/env python3
"""
Shared fixtures: synthetic techno tracks and deterministic analysis backends
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Allow running the suite from a source checkout without installing
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from teknomix.core.audio_analyzer import AnalysisContext, ExtractedFeatures, TempoEstimate  # noqa: E402
from teknomix.core.errors import BackendUnavailable, TempoDetectionError  # noqa: E402
from teknomix.core.models import DecodedAudio  # noqa: E402

SR = 44100


def create_test_track(duration_seconds=30.0, bpm=120.0, sr=SR, bass_freq=80.0,
                      outro_at=None, seed=0):
    """
    Synthetic four-to-the-floor track: kicks on every beat, hats on the
    off-beats and a sustained bass line. If outro_at is given (fraction of
    the duration) the kick and bass stop there.
    """
    rng = np.random.default_rng(seed)
    total_samples = int(duration_seconds * sr)
    samples_per_beat = 60.0 / bpm * sr
    audio = np.zeros(total_samples)

    kick_samples = int(0.1 * sr)
    kick_wave = np.sin(2 * np.pi * 60 * np.linspace(0, 0.1, kick_samples)) * np.exp(-np.linspace(0, 5, kick_samples))
    hihat_samples = int(0.05 * sr)
    hihat_wave = rng.normal(0, 0.1, hihat_samples) * np.exp(-np.linspace(0, 10, hihat_samples))

    outro_sample = int(total_samples * outro_at) if outro_at else total_samples

    beat = 0
    while True:
        pos = int(round(beat * samples_per_beat))
        if pos >= total_samples:
            break
        if pos < outro_sample:
            end_pos = min(pos + kick_samples, total_samples)
            audio[pos:end_pos] += kick_wave[:end_pos - pos] * 0.8
        hat = int(round((beat + 0.5) * samples_per_beat))
        if hat < total_samples:
            end_pos = min(hat + hihat_samples, total_samples)
            audio[hat:end_pos] += hihat_wave[:end_pos - hat] * 0.3
        beat += 1

    t = np.arange(total_samples) / sr
    bass = 0.2 * np.sin(2 * np.pi * bass_freq * t)
    bass[outro_sample:] = 0.0
    audio += bass
    audio += 0.01 * rng.normal(0, 1, total_samples)

    audio = audio / np.max(np.abs(audio)) * 0.8
    return audio.astype(np.float32)


class FakeBackend:
    """Feature backend returning fixed features and counting calls"""

    def __init__(self, bpm=128.0, confidence=2.66, key="A", scale="minor", ticks=None, error=None):
        self.features = ExtractedFeatures(
            bpm=bpm,
            confidence=confidence,
            ticks=np.asarray(ticks if ticks is not None else [], dtype=np.float64),
            key=key,
            scale=scale,
        )
        self.error = error
        self.calls = 0

    def __call__(self, mono, sr):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.features


class FakeDetector:
    """Secondary tempo detector with a fixed answer (or a fixed failure)"""

    def __init__(self, bpm=128.0, offset=0.1, fail=False):
        self.bpm = bpm
        self.offset = offset
        self.fail = fail
        self.calls = 0

    def __call__(self, decoded):
        self.calls += 1
        if self.fail:
            raise TempoDetectionError("no tempo")
        return TempoEstimate(bpm=self.bpm, offset=self.offset)


def unavailable_backend():
    raise BackendUnavailable("essentia is not installed")


def make_context(backend=None, detector=None):
    """AnalysisContext wired to fakes; no backend means reduced mode"""
    loader = (lambda: backend) if backend is not None else unavailable_backend
    return AnalysisContext(backend_loader=loader, tempo_detector=detector or FakeDetector())


@pytest.fixture
def click_track():
    """30 s mono click track at 120 BPM"""
    return DecodedAudio(samples=create_test_track(30.0, 120.0), sample_rate=SR)


@pytest.fixture
def reduced_context():
    return make_context(detector=FakeDetector(bpm=120.0, offset=0.0))


@pytest.fixture
def wav_track(tmp_path):
    """Write a synthetic track to disk and return its path"""
    import soundfile as sf

    def _write(name="track_1.wav", duration=10.0, bpm=120.0, channels=1):
        audio = create_test_track(duration, bpm)
        if channels == 2:
            audio = np.stack([audio, audio], axis=1)
        path = tmp_path / name
        sf.write(str(path), audio, SR)
        return path

    return _write
