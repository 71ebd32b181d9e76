#!/usr/bin/env python3
"""
Offline mix rendering

Each scheduled event plays through its own channel strip
(low shelf -> high shelf -> mid peak -> sweep filter -> gain / aux send).
Strips sum into a master bus; aux sends feed a shared feedback delay whose
output also joins the master. The master is attenuated, limited and encoded
as 16-bit PCM WAV.
"""

import math
import time
import logging
import numpy as np
from scipy.signal import sosfilt
from typing import List, Optional, Tuple

from .config import AudioConstants, MixStyle, RenderConstants
from .errors import DegenerateEvent
from .models import MixResult, MixTimeline, TimelineEvent
from .automation import EventSchedule, FilterType, Param, ScheduledClip
from ..utils.audio_processing import AudioProcessor, FrequencyProcessor

logger = logging.getLogger(__name__)


def _identity_sos() -> np.ndarray:
    return np.array([[1.0, 0.0, 0.0, 1.0, 0.0, 0.0]])


def filter_blockwise(x: np.ndarray, block_params: List[Tuple], sr: int, block: int) -> np.ndarray:
    """
    Run a single time-varying biquad over x.

    block_params holds one (type, frequency, q, gain_db) tuple per block;
    runs of identical parameters are filtered in one call, and filter state
    carries across coefficient changes.
    """
    n = x.shape[-1]
    out = np.empty_like(x)
    zi = np.zeros((1, x.shape[0], 2))
    cache = {}

    j = 0
    while j < len(block_params):
        k = j
        while k + 1 < len(block_params) and block_params[k + 1] == block_params[j]:
            k += 1
        params = block_params[j]
        if params not in cache:
            cache[params] = _design(params, sr)
        lo, hi = j * block, min((k + 1) * block, n)
        out[:, lo:hi], zi = sosfilt(cache[params], x[:, lo:hi], axis=-1, zi=zi)
        j = k + 1

    return out


def _is_identity(params: Tuple, sr: int) -> bool:
    filter_type, frequency, _, gain_db = params
    if filter_type in ('lowshelf', 'highshelf', 'peaking'):
        return gain_db == 0
    if filter_type == 'lowpass':
        return frequency >= sr / 2
    return False


def _design(params: Tuple, sr: int) -> np.ndarray:
    if _is_identity(params, sr):
        return _identity_sos()
    filter_type, frequency, q, gain_db = params
    return FrequencyProcessor.biquad(filter_type, frequency, sr, q=q, gain_db=gain_db)


class ChannelStrip:
    """Per-event processing chain driven by the event's automation"""

    def __init__(self, schedule: EventSchedule, sr: int = AudioConstants.RENDER_SAMPLE_RATE,
                 block: int = RenderConstants.AUTOMATION_BLOCK):
        self.schedule = schedule
        self.sr = sr
        self.block = block

    def _block_times(self, first_sample: int, n: int) -> np.ndarray:
        count = int(math.ceil(n / self.block))
        return (first_sample + np.arange(count) * self.block) / self.sr

    def _stages(self, block_times: np.ndarray) -> List[List[Tuple]]:
        """Per-block parameters of each filter stage, in chain order"""
        s = self.schedule
        count = len(block_times)
        low = s.lane(Param.LOW_SHELF_GAIN).values_at(block_times)
        high = s.lane(Param.HIGH_SHELF_GAIN).values_at(block_times)
        kinds = s.lane(Param.FILTER_TYPE).values_at(block_times)
        freqs = s.lane(Param.FILTER_FREQUENCY).values_at(block_times)
        qs = s.lane(Param.FILTER_Q).values_at(block_times)

        return [
            [('lowshelf', RenderConstants.LOW_SHELF_FREQ, 0.7071, float(g)) for g in low],
            [('highshelf', RenderConstants.HIGH_SHELF_FREQ, 0.7071, float(g)) for g in high],
            [('peaking', RenderConstants.MID_PEAK_FREQ, RenderConstants.MID_PEAK_Q, 0.0)] * count,
            [(FilterType.NAMES.get(float(kind), 'lowpass'), float(f), float(q), 0.0)
             for kind, f, q in zip(kinds, freqs, qs)],
        ]

    def process(self, x: np.ndarray, first_sample: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Filter x (which starts at first_sample on the mix timeline).

        Returns (channel output, aux send or None when the send stays closed).
        """
        n = x.shape[-1]
        y = x.astype(np.float64)

        for stage in self._stages(self._block_times(first_sample, n)):
            if all(_is_identity(params, self.sr) for params in stage):
                continue
            y = filter_blockwise(y, stage, self.sr, self.block)

        times = (first_sample + np.arange(n)) / self.sr
        gain = self.schedule.lane(Param.GAIN).values_at(times)

        aux_lane = self.schedule.lane(Param.AUX_SEND)
        send = None
        if not aux_lane.is_constant():
            send = (y * aux_lane.values_at(times)).astype(np.float32)

        return (y * gain).astype(np.float32), send


class FeedbackDelay:
    """Delay line with a low-passed feedback path: y[n] = x[n-D] + LP(fb * y)[n-D]"""

    def __init__(self, sr: int = AudioConstants.RENDER_SAMPLE_RATE,
                 delay_time: float = RenderConstants.DELAY_TIME,
                 feedback: float = RenderConstants.DELAY_FEEDBACK,
                 cutoff: float = RenderConstants.DELAY_FILTER_FREQ):
        self.delay = max(1, int(round(delay_time * sr)))
        self.feedback = feedback
        self.sos = FrequencyProcessor.biquad('lowpass', cutoff, sr, q=0.7071)

    def process(self, x: np.ndarray) -> np.ndarray:
        d = self.delay
        n = x.shape[-1]
        y = np.zeros_like(x, dtype=np.float64)
        fed = np.zeros_like(y)
        zi = np.zeros((1, x.shape[0], 2))

        # Blocks no longer than the delay only read already-computed output
        for lo in range(d, n, d):
            hi = min(lo + d, n)
            y[:, lo:hi] = x[:, lo - d:hi - d] + fed[:, lo - d:hi - d]
            fed[:, lo:hi], zi = sosfilt(self.sos, self.feedback * y[:, lo:hi], axis=-1, zi=zi)

        return y


class Limiter:
    """Hard-knee peak compressor applied to the master bus"""

    def __init__(self, sr: int = AudioConstants.RENDER_SAMPLE_RATE,
                 threshold_db: float = RenderConstants.LIMITER_THRESHOLD_DB,
                 ratio: float = RenderConstants.LIMITER_RATIO,
                 attack: float = RenderConstants.LIMITER_ATTACK,
                 release: float = RenderConstants.LIMITER_RELEASE,
                 block: int = RenderConstants.LIMITER_DETECTOR_BLOCK):
        self.sr = sr
        self.threshold_db = threshold_db
        self.ratio = ratio
        self.block = block
        self.attack_coeff = math.exp(-block / (attack * sr))
        self.release_coeff = math.exp(-block / (release * sr))

    def gain_reduction_db(self, audio: np.ndarray) -> np.ndarray:
        """Smoothed gain reduction (positive dB) per detector block"""
        peaks = np.max(np.abs(audio), axis=0)
        count = int(math.ceil(len(peaks) / self.block))
        padded = np.zeros(count * self.block)
        padded[:len(peaks)] = peaks
        block_peaks = padded.reshape(count, self.block).max(axis=1)

        level_db = 20.0 * np.log10(np.maximum(block_peaks, 1e-10))
        target = np.maximum(level_db - self.threshold_db, 0.0) * (1.0 - 1.0 / self.ratio)

        reduction = np.empty(count)
        current = 0.0
        for j, wanted in enumerate(target.tolist()):
            coeff = self.attack_coeff if wanted > current else self.release_coeff
            current = wanted + (current - wanted) * coeff
            reduction[j] = current
        return reduction

    def process(self, audio: np.ndarray) -> np.ndarray:
        n = audio.shape[-1]
        if n == 0:
            return audio
        reduction = self.gain_reduction_db(audio)
        centers = (np.arange(len(reduction)) + 0.5) * self.block
        gain = np.interp(np.arange(n), centers, 10.0 ** (-reduction / 20.0))
        return audio * gain


class RenderPipeline:
    """Schedules every event onto the buses and renders the mix offline"""

    def __init__(self, sample_rate: int = AudioConstants.RENDER_SAMPLE_RATE):
        self.sr = sample_rate
        self.delay = FeedbackDelay(sample_rate)
        self.limiter = Limiter(sample_rate)

    @staticmethod
    def validate_event(event: TimelineEvent):
        """Raise DegenerateEvent for timing the renderer cannot play"""
        duration = float(event.duration)
        if not (math.isfinite(event.mix_start_time) and math.isfinite(event.buffer_offset_start)
                and math.isfinite(duration)) or duration <= 0:
            raise DegenerateEvent(
                f"Event {event.track_index} has degenerate timing",
                data={"start": event.mix_start_time, "offset": event.buffer_offset_start,
                      "duration": duration},
            )

    def clip_samples(self, buffer: np.ndarray, clip: ScheduledClip) -> np.ndarray:
        """Samples a clip plays, truncated at the end of its buffer"""
        length = int(round(clip.duration * self.sr))
        if not clip.loops:
            offset = int(round(clip.offset * self.sr))
            return buffer[:, offset:offset + length]

        loop_start = int(round(clip.loop_start * self.sr))
        loop_end = min(int(round(clip.loop_end * self.sr)), buffer.shape[-1])
        if loop_end <= loop_start:
            return buffer[:, :0]
        loop = buffer[:, loop_start:loop_end]
        repeats = int(math.ceil(length / loop.shape[-1]))
        return np.tile(loop, (1, repeats))[:, :length]

    def render_buffer(self, timeline: MixTimeline, schedules: List[EventSchedule]) -> np.ndarray:
        """Render the full mix as float audio shaped (2, samples)"""
        total = int(round(timeline.total_duration * self.sr))
        master = np.zeros((AudioConstants.RENDER_CHANNELS, total), dtype=np.float32)
        aux = np.zeros_like(master)
        aux_used = False

        for schedule in schedules:
            event = schedule.event
            try:
                self.validate_event(event)
            except DegenerateEvent as e:
                logger.warning("Skipping event: %s", e.message)
                continue

            buffer = AudioProcessor.to_stereo(timeline.tracks[event.track_index].samples)
            # Clips scheduled before time 0 start playing immediately
            first = max(0, int(round(event.mix_start_time * self.sr)))
            last = min(int(round(schedule.end * self.sr)), total)
            if last <= first:
                continue

            strip_input = np.zeros((AudioConstants.RENDER_CHANNELS, last - first), dtype=np.float32)
            for clip in schedule.clips:
                data = self.clip_samples(buffer, clip)
                at = max(0, int(round(clip.start * self.sr))) - first
                count = min(data.shape[-1], strip_input.shape[-1] - at)
                if count > 0:
                    strip_input[:, at:at + count] += data[:, :count]

            dry, send = ChannelStrip(schedule, self.sr).process(strip_input, first)
            master[:, first:last] += dry
            if send is not None:
                aux[:, first:last] += send
                aux_used = True

        mixed = master.astype(np.float64)
        if aux_used:
            mixed += self.delay.process(aux)
        mixed *= RenderConstants.MASTER_GAIN
        return self.limiter.process(mixed).astype(np.float32)

    def render(self, timeline: MixTimeline, schedules: List[EventSchedule],
               style: MixStyle) -> MixResult:
        """Render and encode; transition points and techniques cover every event"""
        started = time.time()
        audio = self.render_buffer(timeline, schedules)
        wav_bytes = AudioProcessor.to_wav_bytes(audio, self.sr)
        logger.info("Rendered %.1fs of audio in %.1fs", audio.shape[-1] / self.sr, time.time() - started)

        return MixResult(
            wav_bytes=wav_bytes,
            duration=audio.shape[-1] / self.sr,
            style=style,
            transition_points=timeline.transition_points,
            techniques_used=timeline.techniques,
            tracks=[track.analysis for track in timeline.tracks],
            sample_rate=self.sr,
        )
