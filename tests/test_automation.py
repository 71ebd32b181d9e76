#!/usr/bin/env python3
"""
Tests for automation lanes, transition recipes and the scheduler
"""

import numpy as np
import pytest

from teknomix.core.automation import (
    AutomationLane, ControlPoint, Curve, EQ_KILL_DB, FilterType, Param, RECIPES,
    TransitionScheduler, bass_swap, echo_out, filter_sweep,
)
from teknomix.core.config import TransitionTechnique
from teknomix.core.models import MixTimeline, TimelineEvent


def point(time, value, curve=Curve.SET, param=Param.GAIN):
    return ControlPoint(param, time, value, curve)


def make_event(index, start, duration=100.0, overlap=20.0,
               technique=TransitionTechnique.SLOW_EQ_BLEND, loop=(80.0, 88.0), gain=1.0):
    return TimelineEvent(
        track_index=index,
        mix_start_time=start,
        buffer_offset_start=0.0,
        buffer_offset_end=duration,
        buffer_loop_start=loop[0],
        buffer_loop_end=loop[1],
        overlap_time=overlap,
        technique=technique,
        gain=gain,
    )


class TestAutomationLane:

    def test_default_without_points(self):
        lane = AutomationLane(0.5)
        np.testing.assert_allclose(lane.values_at([0.0, 10.0]), 0.5)
        assert lane.is_constant()

    def test_set_holds_from_its_time(self):
        lane = AutomationLane(1.0, [point(5.0, 0.2)])
        np.testing.assert_allclose(lane.values_at([0.0, 4.99, 5.0, 50.0]), [1.0, 1.0, 0.2, 0.2])

    def test_linear_ramp_from_previous_point(self):
        lane = AutomationLane(1.0, [point(10.0, 0.0), point(20.0, 1.0, Curve.LINEAR)])
        np.testing.assert_allclose(lane.values_at([10.0, 15.0, 20.0, 30.0]), [0.0, 0.5, 1.0, 1.0])

    def test_ramp_without_previous_point_starts_at_default(self):
        lane = AutomationLane(1.0, [point(10.0, 0.0, Curve.LINEAR)])
        np.testing.assert_allclose(lane.values_at([0.0, 5.0, 10.0]), [1.0, 0.5, 0.0])

    def test_exponential_sweep_midpoint(self):
        lane = AutomationLane(22000.0, [
            point(10.0, 20.0, param=Param.FILTER_FREQUENCY),
            point(20.0, 8000.0, Curve.EXPONENTIAL, Param.FILTER_FREQUENCY),
        ])
        values = lane.values_at([10.0, 15.0, 20.0])
        np.testing.assert_allclose(values, [20.0, 400.0, 8000.0], rtol=1e-9)

    def test_exponential_toward_zero_holds_start(self):
        lane = AutomationLane(1.0, [point(0.0, 0.8), point(10.0, 0.0, Curve.EXPONENTIAL)])
        np.testing.assert_allclose(lane.values_at([0.0, 5.0, 9.9]), 0.8)
        assert lane.values_at([10.0])[0] == 0.0

    def test_exponential_across_sign_change_holds_start(self):
        lane = AutomationLane(1.0, [point(0.0, -1.0), point(10.0, 1.0, Curve.EXPONENTIAL)])
        assert lane.values_at([5.0])[0] == -1.0

    def test_later_point_wins_at_equal_time(self):
        lane = AutomationLane(1.0, [point(5.0, 0.3), point(5.0, 0.7)])
        assert lane.values_at([5.0])[0] == pytest.approx(0.7)

    def test_points_are_sorted_by_time(self):
        lane = AutomationLane(1.0, [point(20.0, 1.0, Curve.LINEAR), point(10.0, 0.0)])
        assert lane.values_at([15.0])[0] == pytest.approx(0.5)


class TestRecipes:

    @pytest.mark.parametrize("technique", list(RECIPES))
    @pytest.mark.parametrize("is_outgoing", [True, False])
    def test_no_exponential_point_targets_zero(self, technique, is_outgoing):
        points = RECIPES[technique](is_outgoing, 100.0, 30.0, 1.0)
        for p in points:
            if p.curve is Curve.EXPONENTIAL:
                assert p.value != 0.0

    def test_bass_swap_at_three_quarters(self):
        outgoing = bass_swap(True, 0.0, 40.0, 1.0)
        kill = [p for p in outgoing if p.param is Param.LOW_SHELF_GAIN and p.curve is Curve.LINEAR]
        assert kill == [ControlPoint(Param.LOW_SHELF_GAIN, 30.0, EQ_KILL_DB, Curve.LINEAR)]

        incoming = AutomationLane(0.0, [p for p in bass_swap(False, 0.0, 40.0, 1.0)
                                         if p.param is Param.LOW_SHELF_GAIN])
        values = incoming.values_at([1.0, 29.9, 30.1, 35.0])
        np.testing.assert_allclose(values, [EQ_KILL_DB, EQ_KILL_DB, 0.0, 0.0], atol=1e-9)

    def test_filter_sweep_switches_to_highpass(self):
        points = filter_sweep(True, 50.0, 30.0, 1.0)
        types = [p for p in points if p.param is Param.FILTER_TYPE]
        assert types == [ControlPoint(Param.FILTER_TYPE, 50.0, FilterType.HIGHPASS, Curve.SET)]

    def test_echo_out_opens_send(self):
        lane = AutomationLane(0.0, [p for p in echo_out(True, 0.0, 10.0, 1.0)
                                    if p.param is Param.AUX_SEND])
        np.testing.assert_allclose(lane.values_at([7.0, 8.0, 9.0, 10.0]), [0.0, 0.0, 0.5, 1.0])


class TestTransitionScheduler:

    def test_loop_echo_gets_sixteen_second_tail(self):
        event = make_event(0, 0.0, technique=TransitionTechnique.LOOP_ECHO)
        schedule = TransitionScheduler().schedule_event(event, None, has_next=True)

        assert len(schedule.clips) == 2
        tail = schedule.clips[1]
        assert tail.loops
        assert tail.start == 100.0
        assert tail.duration == 16.0
        assert (tail.loop_start, tail.loop_end) == (80.0, 88.0)
        assert schedule.end == 116.0

    @pytest.mark.parametrize("technique", [TransitionTechnique.ECHO_OUT, TransitionTechnique.DROP_SWAP])
    def test_echo_and_drop_get_eight_second_tail(self, technique):
        event = make_event(0, 0.0, technique=technique)
        schedule = TransitionScheduler().schedule_event(event, None, has_next=True)
        assert schedule.clips[1].duration == 8.0

    def test_no_tail_without_loop_region(self):
        event = make_event(0, 0.0, technique=TransitionTechnique.LOOP_ECHO, loop=(0.0, 0.0))
        schedule = TransitionScheduler().schedule_event(event, None, has_next=True)
        assert len(schedule.clips) == 1

    def test_no_tail_for_last_event(self):
        event = make_event(0, 0.0, technique=TransitionTechnique.LOOP_ECHO)
        schedule = TransitionScheduler().schedule_event(event, None, has_next=False)
        assert len(schedule.clips) == 1

    def test_no_tail_for_blends(self):
        event = make_event(0, 0.0, technique=TransitionTechnique.LONG_BLEND)
        schedule = TransitionScheduler().schedule_event(event, None, has_next=True)
        assert len(schedule.clips) == 1

    def test_incoming_track_starts_silent_and_fades_in(self):
        first = make_event(0, 0.0, overlap=20.0, technique=TransitionTechnique.SLOW_EQ_BLEND)
        second = make_event(1, 80.0)
        schedules = TransitionScheduler().schedule(MixTimeline([first, second], [], 190.0))

        gain = schedules[1].lane(Param.GAIN)
        np.testing.assert_allclose(gain.values_at([80.0, 90.0, 100.0, 150.0]), [0.0, 0.5, 1.0, 1.0])

    def test_outgoing_fade_window(self):
        first = make_event(0, 0.0, overlap=20.0, technique=TransitionTechnique.SLOW_EQ_BLEND)
        second = make_event(1, 80.0)
        schedules = TransitionScheduler().schedule(MixTimeline([first, second], [], 190.0))

        gain = schedules[0].lane(Param.GAIN)
        np.testing.assert_allclose(gain.values_at([0.0, 79.9, 90.0, 100.0]), [1.0, 1.0, 0.5, 0.0])

    def test_filter_type_stays_lowpass_before_sweep(self):
        first = make_event(0, 0.0, overlap=20.0, technique=TransitionTechnique.FILTER_SWEEP)
        schedule = TransitionScheduler().schedule_event(first, None, has_next=True)

        lane = schedule.lane(Param.FILTER_TYPE)
        np.testing.assert_allclose(lane.values_at([0.0, 79.0, 80.0, 99.0]),
                                   [FilterType.LOWPASS, FilterType.LOWPASS,
                                    FilterType.HIGHPASS, FilterType.HIGHPASS])

    def test_event_gain_applied_at_start(self):
        event = make_event(0, 0.0, gain=1.5)
        schedule = TransitionScheduler().schedule_event(event, None, has_next=False)
        assert schedule.lane(Param.GAIN).values_at([50.0])[0] == 1.5

    def test_unknown_technique_uses_default_recipe(self):
        scheduler = TransitionScheduler()
        assert scheduler.recipe_for(TransitionTechnique.REVERB_WASH) is RECIPES[TransitionTechnique.SLOW_EQ_BLEND]
