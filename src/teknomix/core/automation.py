#!/usr/bin/env python3
"""
Transition automation

Each transition technique is an automation recipe: a pure function from
(is_outgoing, start, duration, gain) to control points on the channel strip.
The TransitionScheduler applies recipes to a timeline, adds channel resets
for incoming tracks and the looping tails used by echo-style exits.
"""

import logging
import numpy as np
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

from .config import DEFAULT_TECHNIQUE, RenderConstants, TransitionTechnique
from .models import MixTimeline, RenderSeconds, TimelineEvent

logger = logging.getLogger(__name__)


class Param(Enum):
    """Automatable channel-strip parameters"""
    GAIN = "gain"
    LOW_SHELF_GAIN = "low_shelf_gain"
    HIGH_SHELF_GAIN = "high_shelf_gain"
    FILTER_FREQUENCY = "filter_frequency"
    FILTER_Q = "filter_q"
    FILTER_TYPE = "filter_type"
    AUX_SEND = "aux_send"


class Curve(Enum):
    SET = "set"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class FilterType:
    """Values of the FILTER_TYPE step parameter"""
    LOWPASS = 0.0
    HIGHPASS = 1.0

    NAMES = {LOWPASS: 'lowpass', HIGHPASS: 'highpass'}


# Value of each parameter before any point is scheduled
PARAM_DEFAULTS = {
    Param.GAIN: 1.0,
    Param.LOW_SHELF_GAIN: 0.0,
    Param.HIGH_SHELF_GAIN: 0.0,
    Param.FILTER_FREQUENCY: RenderConstants.FILTER_OPEN_FREQ,
    Param.FILTER_Q: RenderConstants.FILTER_DEFAULT_Q,
    Param.FILTER_TYPE: FilterType.LOWPASS,
    Param.AUX_SEND: 0.0,
}

EQ_KILL_DB = -40.0
HIGH_TRIM_DB = -10.0
SWEEP_START_FREQ = 20.0
SWEEP_END_FREQ = 8000.0
SWEEP_Q = 4.0
ECHO_FLOOR = 0.001


class ControlPoint(NamedTuple):
    """One automation instruction: parameter reaches value at time via curve"""
    param: Param
    time: float
    value: float
    curve: Curve = Curve.SET


def _set(param: Param, time: float, value: float) -> ControlPoint:
    return ControlPoint(param, time, value, Curve.SET)


def _linear(param: Param, time: float, value: float) -> ControlPoint:
    return ControlPoint(param, time, value, Curve.LINEAR)


def _exponential(param: Param, time: float, value: float) -> ControlPoint:
    return ControlPoint(param, time, value, Curve.EXPONENTIAL)


class AutomationLane:
    """
    Evaluates the control points of a single parameter.

    SET holds its value from its time on. A ramp point interpolates from the
    previous point (or from the default at time 0) up to its own time.
    Exponential ramps hold the start value when either end is zero or the
    signs differ.
    """

    def __init__(self, default: float, points: Sequence[ControlPoint] = ()):
        self.default = float(default)
        ordered = sorted(points, key=lambda p: p.time)
        self.times = np.array([p.time for p in ordered], dtype=np.float64)
        self.values = np.array([p.value for p in ordered], dtype=np.float64)
        self.curves = [p.curve for p in ordered]

    def __len__(self) -> int:
        return len(self.times)

    def is_constant(self) -> bool:
        return len(self.times) == 0 or bool(np.all(self.values == self.default))

    def values_at(self, t: np.ndarray) -> np.ndarray:
        """Parameter value at each (ascending) time in t"""
        t = np.asarray(t, dtype=np.float64)
        if len(self.times) == 0:
            return np.full(t.shape, self.default)

        n = len(self.times)
        # Segment k runs from point k-1 (or the default at 0) to point k
        start_times = np.concatenate(([0.0], self.times))
        start_values = np.concatenate(([self.default], self.values))
        seg = np.searchsorted(self.times, t, side='right')

        out = start_values[seg].copy()

        for k in range(n):
            curve = self.curves[k]
            if curve is Curve.SET:
                continue
            t0, t1 = start_times[k], self.times[k]
            if t1 <= t0:
                continue
            mask = seg == k
            if not np.any(mask):
                continue
            v0, v1 = start_values[k], self.values[k]
            frac = np.clip((t[mask] - t0) / (t1 - t0), 0.0, 1.0)
            if curve is Curve.LINEAR:
                out[mask] = v0 + (v1 - v0) * frac
            elif v0 != 0 and v1 != 0 and (v0 > 0) == (v1 > 0):
                out[mask] = v0 * (v1 / v0) ** frac
            else:
                out[mask] = v0

        return out


Recipe = Callable[[bool, float, float, float], List[ControlPoint]]


def bass_swap(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Low end handed over in 0.1 s at 75% of the window"""
    end = start + duration
    swap = start + duration * 0.75
    if is_outgoing:
        return [
            _set(Param.GAIN, start, gain),
            _set(Param.GAIN, end - 1, gain),
            _linear(Param.GAIN, end, 0.0),
            _set(Param.LOW_SHELF_GAIN, swap - 0.1, 0.0),
            _linear(Param.LOW_SHELF_GAIN, swap, EQ_KILL_DB),
        ]
    return [
        _set(Param.GAIN, start, 0.0),
        _linear(Param.GAIN, start + 4, gain),
        _set(Param.LOW_SHELF_GAIN, start, EQ_KILL_DB),
        _set(Param.LOW_SHELF_GAIN, swap, EQ_KILL_DB),
        _linear(Param.LOW_SHELF_GAIN, swap + 0.1, 0.0),
    ]


def long_blend(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Linear cross-ramp across the window with shelf trims on the tail"""
    end = start + duration
    if is_outgoing:
        return [
            _set(Param.GAIN, start, gain),
            _linear(Param.GAIN, end, 0.0),
            _linear(Param.LOW_SHELF_GAIN, end - 10, EQ_KILL_DB),
            _linear(Param.HIGH_SHELF_GAIN, end, HIGH_TRIM_DB),
        ]
    return [
        _set(Param.GAIN, start, 0.0),
        _linear(Param.GAIN, end, gain),
        _set(Param.LOW_SHELF_GAIN, start, EQ_KILL_DB),
        _linear(Param.LOW_SHELF_GAIN, end, 0.0),
    ]


def filter_sweep(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Resonant high-pass swept 20 Hz to 8 kHz on the way out"""
    end = start + duration
    if is_outgoing:
        return [
            _set(Param.FILTER_TYPE, start, FilterType.HIGHPASS),
            _set(Param.FILTER_Q, start, SWEEP_Q),
            _set(Param.FILTER_FREQUENCY, start, SWEEP_START_FREQ),
            _exponential(Param.FILTER_FREQUENCY, end, SWEEP_END_FREQ),
            _set(Param.GAIN, start, gain),
            _linear(Param.GAIN, end, 0.0),
        ]
    return [
        _set(Param.GAIN, start, 0.0),
        _linear(Param.GAIN, end, gain),
    ]


def echo_out(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Delay send opened over the last 2 s, then gain collapsed into the echoes"""
    end = start + duration
    if is_outgoing:
        return [
            _set(Param.GAIN, start, gain),
            _set(Param.AUX_SEND, end - 2, 0.0),
            _linear(Param.AUX_SEND, end, 1.0),
            _set(Param.GAIN, end - 0.1, gain),
            _exponential(Param.GAIN, end, ECHO_FLOOR),
        ]
    return [
        _set(Param.GAIN, start, 0.0),
        _linear(Param.GAIN, start + 2, gain),
    ]


def drop_swap(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Flat until 90% of the window, then a 0.1 s cut/slam"""
    drop = start + duration * 0.9
    if is_outgoing:
        return [
            _set(Param.GAIN, start, gain),
            _set(Param.GAIN, drop, gain),
            _linear(Param.GAIN, drop + 0.1, 0.0),
        ]
    return [
        _set(Param.GAIN, start, 0.0),
        _set(Param.GAIN, drop, 0.0),
        _linear(Param.GAIN, drop + 0.1, gain),
    ]


def cross_fade(is_outgoing: bool, start: float, duration: float, gain: float) -> List[ControlPoint]:
    """Plain linear cross-fade"""
    end = start + duration
    if is_outgoing:
        return [_set(Param.GAIN, start, gain), _linear(Param.GAIN, end, 0.0)]
    return [_set(Param.GAIN, start, 0.0), _linear(Param.GAIN, end, gain)]


RECIPES: Dict[TransitionTechnique, Recipe] = {
    TransitionTechnique.BASS_SWAP: bass_swap,
    TransitionTechnique.LONG_BLEND: long_blend,
    TransitionTechnique.PHRASE_MIXING: long_blend,
    TransitionTechnique.FILTER_SWEEP: filter_sweep,
    TransitionTechnique.ECHO_OUT: echo_out,
    TransitionTechnique.LOOP_ECHO: echo_out,
    TransitionTechnique.DROP_SWAP: drop_swap,
    TransitionTechnique.SLOW_EQ_BLEND: cross_fade,
    TransitionTechnique.HARD_CUT: cross_fade,
}

LOOP_TAIL_TECHNIQUES = (
    TransitionTechnique.LOOP_ECHO,
    TransitionTechnique.ECHO_OUT,
    TransitionTechnique.DROP_SWAP,
)


def incoming_reset(start: float) -> List[ControlPoint]:
    """Channel state for a track entering the mix"""
    return [
        _set(Param.GAIN, start, 0.0),
        _set(Param.LOW_SHELF_GAIN, start, 0.0),
        _set(Param.HIGH_SHELF_GAIN, start, 0.0),
        _set(Param.FILTER_FREQUENCY, start, RenderConstants.FILTER_OPEN_FREQ),
        _set(Param.FILTER_TYPE, start, FilterType.LOWPASS),
        _set(Param.AUX_SEND, start, 0.0),
    ]


@dataclass(frozen=True)
class ScheduledClip:
    """Playback of a buffer region on the mix timeline (render time)"""
    start: RenderSeconds
    offset: RenderSeconds
    duration: RenderSeconds
    loop_start: Optional[RenderSeconds] = None
    loop_end: Optional[RenderSeconds] = None

    @property
    def loops(self) -> bool:
        return self.loop_start is not None and self.loop_end is not None

    @property
    def end(self) -> RenderSeconds:
        return RenderSeconds(self.start + self.duration)


@dataclass
class EventSchedule:
    """Everything one channel strip plays and automates"""
    event: TimelineEvent
    clips: List[ScheduledClip] = field(default_factory=list)
    points: List[ControlPoint] = field(default_factory=list)

    def lane(self, param: Param) -> AutomationLane:
        return AutomationLane(PARAM_DEFAULTS[param], [p for p in self.points if p.param is param])

    @property
    def end(self) -> RenderSeconds:
        return RenderSeconds(max((c.end for c in self.clips), default=self.event.mix_start_time))


class TransitionScheduler:
    """Turns a timeline into per-event clips and automation"""

    def __init__(self, recipes: Optional[Dict[TransitionTechnique, Recipe]] = None):
        self.recipes = recipes if recipes is not None else RECIPES

    def recipe_for(self, technique: TransitionTechnique) -> Recipe:
        return self.recipes.get(technique, self.recipes.get(DEFAULT_TECHNIQUE, cross_fade))

    @staticmethod
    def loop_tail_length(technique: TransitionTechnique) -> float:
        if technique is TransitionTechnique.LOOP_ECHO:
            return RenderConstants.LOOP_ECHO_TAIL
        return RenderConstants.LOOP_TAIL

    def schedule_event(self, event: TimelineEvent,
                       previous: Optional[TimelineEvent],
                       has_next: bool) -> EventSchedule:
        """Clips and automation for one event given its neighbours"""
        start = float(event.mix_start_time)
        duration = float(event.duration)
        schedule = EventSchedule(event=event)

        schedule.clips.append(ScheduledClip(
            start=event.mix_start_time,
            offset=event.buffer_offset_start,
            duration=event.duration,
        ))
        schedule.points.append(_set(Param.GAIN, start, event.gain))

        if previous is not None:
            schedule.points.extend(incoming_reset(start))
            recipe = self.recipe_for(previous.technique)
            schedule.points.extend(recipe(False, start, float(previous.overlap_time), event.gain))

        if has_next:
            overlap = float(event.overlap_time)
            transition_start = start + duration - overlap
            recipe = self.recipe_for(event.technique)
            schedule.points.extend(recipe(True, transition_start, overlap, event.gain))

            if event.technique in LOOP_TAIL_TECHNIQUES and event.has_loop_region:
                tail = self.loop_tail_length(event.technique)
                schedule.clips.append(ScheduledClip(
                    start=RenderSeconds(start + duration),
                    offset=event.buffer_loop_start,
                    duration=RenderSeconds(tail),
                    loop_start=event.buffer_loop_start,
                    loop_end=event.buffer_loop_end,
                ))
                logger.debug("Event %d: %.0fs loop tail (%.2f-%.2fs)", event.track_index, tail,
                             event.buffer_loop_start, event.buffer_loop_end)

        return schedule

    def schedule(self, timeline: MixTimeline) -> List[EventSchedule]:
        events = timeline.events
        return [
            self.schedule_event(
                event,
                previous=events[i - 1] if i > 0 else None,
                has_next=i + 1 < len(events),
            )
            for i, event in enumerate(events)
        ]
