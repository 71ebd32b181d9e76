#!/usr/bin/env python3
"""
Mix timeline construction

Sequences stretched tracks, picks a transition technique per boundary and
lays the tracks out so consecutive ones overlap by the technique's length.
All positions produced here are RenderSeconds.
"""

import random
import logging
from typing import List, Optional, Sequence, Tuple

from .config import (
    DEFAULT_TECHNIQUE, STYLE_PROFILES, TECHNIQUE_OVERLAP_BARS,
    MixConfiguration, MixStyle, RenderConstants, TransitionTechnique,
)
from .models import (
    MixTimeline, RenderSeconds, SourceSeconds, StretchedTrack, TimelineEvent,
)

logger = logging.getLogger(__name__)


def choose_technique(style: Optional[MixStyle], rng: random.Random,
                     profiles=STYLE_PROFILES) -> TransitionTechnique:
    """
    Weighted random draw from a style's technique profile.

    Falls back to the default blend for an unknown style or when the draw
    falls through the profile.
    """
    profile: Sequence[Tuple[TransitionTechnique, float]] = profiles.get(style) or []
    if not profile:
        return DEFAULT_TECHNIQUE

    total_weight = sum(weight for _, weight in profile)
    r = rng.random() * total_weight

    for technique, weight in profile:
        if r < weight:
            return technique
        r -= weight
    return DEFAULT_TECHNIQUE


def overlap_bars(technique: TransitionTechnique, default_bars: int = 32) -> int:
    """Overlap length in bars for a technique"""
    return TECHNIQUE_OVERLAP_BARS.get(technique, default_bars)


class MixTimelineBuilder:
    """Builds the ordered event list and total render length for a mix"""

    def __init__(self, config: MixConfiguration, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng if rng is not None else random.Random(config.seed)

    def overlap_time(self, technique: TransitionTechnique) -> RenderSeconds:
        """Overlap in seconds at the target tempo"""
        bars = overlap_bars(technique, self.config.transition_length_bars)
        return RenderSeconds(bars * self.config.bar_duration)

    @staticmethod
    def buffer_offsets(track: StretchedTrack) -> Tuple[RenderSeconds, RenderSeconds, RenderSeconds, RenderSeconds]:
        """Cue points rescaled into stretched-buffer time: (start, end, loop start, loop end)"""
        analysis = track.analysis
        cues = analysis.cue_points

        cue_start = SourceSeconds(cues.start if cues else 0.0)
        cue_end = SourceSeconds(cues.end if cues and cues.end else analysis.duration)
        loop_start = SourceSeconds(cues.loop_region.start if cues else 0.0)
        loop_end = SourceSeconds(cues.loop_region.end if cues else 0.0)

        return (track.render_time(cue_start), track.render_time(cue_end),
                track.render_time(loop_start), track.render_time(loop_end))

    def build(self, tracks: List[StretchedTrack]) -> MixTimeline:
        """
        Lay out tracks in order.

        Each non-final event is followed by a successor starting at
        start + duration - overlap; the final event always uses the default
        blend with no overlap.
        """
        cursor = 0.0
        events: List[TimelineEvent] = []

        for i, track in enumerate(tracks):
            has_next = i + 1 < len(tracks)

            if has_next:
                technique = choose_technique(self.config.style, self.rng)
                overlap = self.overlap_time(technique)
            else:
                technique = DEFAULT_TECHNIQUE
                overlap = RenderSeconds(0.0)

            offset_start, offset_end, loop_start, loop_end = self.buffer_offsets(track)

            event = TimelineEvent(
                track_index=i,
                mix_start_time=RenderSeconds(cursor),
                buffer_offset_start=offset_start,
                buffer_offset_end=offset_end,
                buffer_loop_start=loop_start,
                buffer_loop_end=loop_end,
                overlap_time=overlap,
                technique=technique,
                gain=track.analysis.gain_factor or 1.0,
            )
            events.append(event)

            logger.debug("Event %d (%s): start %.2fs, length %.2fs, %s, overlap %.2fs",
                         i, track.analysis.name, cursor, event.duration,
                         technique.value, overlap)

            if has_next:
                cursor += event.duration - overlap
            else:
                cursor += event.duration

        total = RenderSeconds(max(cursor + RenderConstants.SAFETY_TAIL, RenderConstants.SAFETY_TAIL))
        return MixTimeline(events=events, tracks=list(tracks), total_duration=total)
