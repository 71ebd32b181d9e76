#!/usr/bin/env python3
"""
Mix generation functionality for Tekno Mix

Orchestrates a mix request: per-track decode, analysis and time stretching
on a bounded worker pool, then timeline layout, transition scheduling and
the offline render.
"""

import os
import random
import logging
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, NamedTuple, Optional, Sequence, Union

from .config import MixConfiguration
from .errors import DecodeError, NoValidTracks
from .models import DecodedAudio, MixResult, StretchedTrack, TrackAnalysis, TrackStatus
from .audio_analyzer import AnalysisContext, FeatureAnalyzer
from .timeline import MixTimelineBuilder
from .automation import TransitionScheduler
from .renderer import RenderPipeline
from ..utils.audio_processing import AudioProcessor, TimeStretcher

logger = logging.getLogger(__name__)

TrackSource = Union[str, Path, bytes]
StatusCallback = Callable[[int, str, TrackStatus], None]


class PreparedTrack(NamedTuple):
    """Analysis of one source plus its stretched buffer (None unless Ready)"""
    analysis: TrackAnalysis
    stretched: Optional[StretchedTrack]


def source_name(source: TrackSource, index: int) -> str:
    """Display name for a track source"""
    if isinstance(source, (bytes, bytearray)):
        return f"track_{index + 1}"
    return Path(source).stem


class MixGenerator:
    """Handles DJ mix generation from a list of track sources"""

    def __init__(self, config: Optional[MixConfiguration] = None,
                 context: Optional[AnalysisContext] = None,
                 rng: Optional[random.Random] = None,
                 decoder: Callable[[TrackSource], DecodedAudio] = AudioProcessor.load_audio,
                 stretcher: Optional[TimeStretcher] = None):
        self.config = config or MixConfiguration()
        self.config.validate()
        self.context = context or AnalysisContext()
        self.rng = rng if rng is not None else random.Random(self.config.seed)
        self.decoder = decoder
        self.stretcher = stretcher or TimeStretcher()
        self.analyzer = FeatureAnalyzer(self.context, target_bpm=self.config.target_bpm)
        self.scheduler = TransitionScheduler()
        self.renderer = RenderPipeline()

    def _worker_count(self, track_count: int) -> int:
        if self.config.max_workers:
            return max(1, min(track_count, self.config.max_workers))
        return max(1, min(track_count, os.cpu_count() or 4))

    def _process_track(self, index: int, source: TrackSource, stretch: bool,
                       on_status: Optional[StatusCallback]) -> PreparedTrack:
        """Decode, analyze and optionally stretch one track; failures stay with the track"""
        name = source_name(source, index)
        if on_status:
            on_status(index, name, TrackStatus.ANALYZING)

        try:
            decoded = self.decoder(source)
            analysis = self.analyzer.analyze(decoded, name)
        except DecodeError as e:
            logger.error("Failed to decode %s: %s", name, e.message)
            analysis = TrackAnalysis.failed(name, e.message)
        except Exception as e:
            logger.exception("Failed to analyze %s", name)
            analysis = TrackAnalysis.failed(name, str(e))

        if on_status:
            on_status(index, name, analysis.status)

        if not stretch or not analysis.is_ready:
            return PreparedTrack(analysis, None)

        try:
            tempo = analysis.playback_ratio
            samples = self.stretcher.stretch(decoded.samples, tempo)
            logger.debug("%s stretched x%.4f (%.2f -> %.2f BPM)", name, tempo,
                         analysis.bpm, self.config.target_bpm)
            stretched = StretchedTrack(samples=samples, sample_rate=decoded.sample_rate,
                                       tempo=tempo, analysis=analysis)
        except Exception:
            logger.exception("Failed to process %s", name)
            stretched = None

        return PreparedTrack(analysis, stretched)

    def _run(self, sources: Sequence[TrackSource], stretch: bool,
             on_status: Optional[StatusCallback]) -> List[PreparedTrack]:
        """Process all sources in parallel, returning results in input order"""
        if on_status:
            for index, source in enumerate(sources):
                on_status(index, source_name(source, index), TrackStatus.PENDING)

        if not sources:
            return []

        results = [None] * len(sources)
        with ThreadPoolExecutor(max_workers=self._worker_count(len(sources))) as executor:
            future_to_index = {
                executor.submit(self._process_track, index, source, stretch, on_status): index
                for index, source in enumerate(sources)
            }
            for future in as_completed(future_to_index):
                results[future_to_index[future]] = future.result()

        return results

    def analyze_tracks(self, sources: Sequence[TrackSource],
                       on_status: Optional[StatusCallback] = None) -> List[TrackAnalysis]:
        """Analyze every source; failed tracks come back with Error status"""
        return [prepared.analysis for prepared in self._run(sources, False, on_status)]

    def prepare_tracks(self, sources: Sequence[TrackSource],
                       on_status: Optional[StatusCallback] = None) -> List[PreparedTrack]:
        """Analyze and stretch every source, in input order"""
        return self._run(sources, True, on_status)

    def generate_mix(self, sources: Sequence[TrackSource],
                     output_path: Optional[Union[str, Path]] = None,
                     on_status: Optional[StatusCallback] = None) -> MixResult:
        """
        Build the complete mix.

        Raises:
            NoValidTracks: no track reached Ready (or every Ready track failed
                to stretch); nothing is rendered or written
        """
        return self.render_prepared(self.prepare_tracks(sources, on_status), output_path)

    def render_prepared(self, prepared: Sequence[PreparedTrack],
                        output_path: Optional[Union[str, Path]] = None) -> MixResult:
        """Lay out, schedule and render already prepared tracks"""
        ready = [p.analysis for p in prepared if p.analysis.is_ready]
        if not ready:
            raise NoValidTracks("No valid tracks to mix.", data={"requested": len(prepared)})

        stretched = [p.stretched for p in prepared if p.stretched is not None]
        if not stretched:
            raise NoValidTracks("Failed to process any tracks.", data={"ready": len(ready)})

        logger.info("Mixing %d of %d tracks in style %s", len(stretched), len(prepared),
                    self.config.style.value)

        timeline = MixTimelineBuilder(self.config, self.rng).build(stretched)
        schedules = self.scheduler.schedule(timeline)
        result = self.renderer.render(timeline, schedules, self.config.style)

        if output_path is not None:
            result.write(output_path)
            logger.info("Mix written to %s", output_path)

        return result
