#!/usr/bin/env python3
"""
Common audio processing utilities
Decoding, overlap-add time stretching, filter design, loudness helpers and
WAV encoding shared by the analyzer and the render pipeline.
"""

import io
import math
import logging
import numpy as np
import librosa
import soundfile as sf
from scipy.signal import butter, sosfiltfilt
from typing import Union, Optional, Dict

from ..core.config import AudioConstants
from ..core.errors import DecodeError
from ..core.models import DecodedAudio

logger = logging.getLogger(__name__)


class AudioProcessor:
    """Common audio processing operations"""

    @staticmethod
    def load_audio(source: Union[str, bytes, bytearray],
                   sr: int = AudioConstants.RENDER_SAMPLE_RATE) -> DecodedAudio:
        """
        Decode a file path or raw bytes into (channels, samples) float32 PCM.

        Raises:
            DecodeError: when the container is unreadable or empty
        """
        name = "<bytes>" if isinstance(source, (bytes, bytearray)) else str(source)
        try:
            handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
            audio, sample_rate = librosa.load(handle, sr=sr, mono=False)
        except Exception as e:
            raise DecodeError(f"Audio decoding failed: {e}", data={"source": name}, cause=e) from e

        if audio.size == 0:
            raise DecodeError("Decoded audio is empty", data={"source": name})

        audio = np.atleast_2d(audio)[:AudioConstants.RENDER_CHANNELS]
        return DecodedAudio(samples=audio.astype(np.float32), sample_rate=int(sample_rate))

    @staticmethod
    def to_stereo(samples: np.ndarray) -> np.ndarray:
        """Up-mix mono to two channels, truncate anything wider"""
        samples = np.atleast_2d(samples)
        if samples.shape[0] == 1:
            return np.repeat(samples, 2, axis=0)
        return samples[:2]

    @staticmethod
    def rms_profile(samples: np.ndarray, buckets: int = AudioConstants.ENERGY_BUCKETS) -> np.ndarray:
        """RMS of `buckets` equal, contiguous chunks (tail remainder ignored)"""
        chunk = len(samples) // buckets
        if chunk <= 0:
            return np.zeros(0)
        frames = np.asarray(samples[:chunk * buckets], dtype=np.float64).reshape(buckets, chunk)
        return np.sqrt(np.mean(frames * frames, axis=1))

    @staticmethod
    def auto_gain(samples: np.ndarray, stride: int = AudioConstants.GAIN_STRIDE,
                  target_rms: float = AudioConstants.TARGET_RMS) -> float:
        """Gain that brings a strided RMS estimate to target_rms, clamped"""
        if len(samples) == 0:
            return 1.0
        picked = np.asarray(samples[::stride], dtype=np.float64)
        rms = math.sqrt(float(np.sum(picked * picked)) / (len(samples) / stride))
        if rms < 0.001:
            return 1.0
        gain = target_rms / rms
        return float(min(max(gain, AudioConstants.MIN_GAIN), AudioConstants.MAX_GAIN))

    @staticmethod
    def to_wav_bytes(audio: np.ndarray, sr: int = AudioConstants.RENDER_SAMPLE_RATE) -> bytes:
        """Encode float audio (channels, samples) as 16-bit PCM WAV bytes"""
        audio = AudioProcessor.to_stereo(np.asarray(audio, dtype=np.float32))
        clipped = np.clip(audio, -1.0, 1.0)
        scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
        # int16 frames are written unscaled
        pcm = scaled.astype(np.int16).T

        buf = io.BytesIO()
        sf.write(buf, pcm, sr, format="WAV", subtype="PCM_16")
        return buf.getvalue()


class TimeStretcher:
    """
    Naive overlap-add resampler.

    Grains are read at an analysis hop of hop_size * speed_ratio and written
    at a fixed synthesis hop, so tempo changes by speed_ratio and pitch moves
    with it (no phase-vocoder correction).
    """

    def __init__(self, window_size: int = AudioConstants.STRETCH_WINDOW,
                 overlap: int = AudioConstants.STRETCH_OVERLAP):
        self.window_size = window_size
        self.hop_size = window_size // overlap
        self.window = np.hanning(window_size).astype(np.float32)

    def stretch(self, samples: np.ndarray, speed_ratio: float) -> np.ndarray:
        """Return samples played speed_ratio times faster (identity returns the input object)"""
        if abs(speed_ratio - 1.0) < AudioConstants.STRETCH_IDENTITY_TOLERANCE:
            return samples

        was_mono = samples.ndim == 1
        x = np.atleast_2d(samples)
        length = x.shape[-1]
        new_length = int(math.floor(length / speed_ratio))
        out = np.zeros((x.shape[0], new_length), dtype=np.float32)

        win = self.window_size
        analysis_hop = self.hop_size * speed_ratio
        in_pos = 0.0
        out_pos = 0

        while out_pos < new_length - win and in_pos < length - win:
            read = int(in_pos)
            out[:, out_pos:out_pos + win] += x[:, read:read + win] * self.window
            out_pos += self.hop_size
            in_pos += analysis_hop

        logger.debug("Stretched %d -> %d samples (x%.4f)", length, new_length, speed_ratio)
        return out[0] if was_mono else out


class FrequencyProcessor:
    """Frequency domain audio processing"""

    @staticmethod
    def create_filters(sr: int, low_cutoff: float, high_cutoff: Optional[float] = None) -> Dict[str, np.ndarray]:
        """Create Butterworth filters (second-order sections)"""
        nyquist = sr / 2
        filters = {}

        if low_cutoff < nyquist:
            filters['lowpass'] = butter(4, low_cutoff, btype='lowpass', fs=sr, output='sos')

        if high_cutoff and high_cutoff < nyquist:
            filters['highpass'] = butter(4, high_cutoff, btype='highpass', fs=sr, output='sos')

        if low_cutoff < nyquist and high_cutoff and high_cutoff < nyquist:
            filters['bandpass'] = butter(4, [low_cutoff, high_cutoff], btype='bandpass', fs=sr, output='sos')

        return filters

    @staticmethod
    def separate_frequency_bands(audio: np.ndarray, sr: int,
                                 low_cutoff: float = AudioConstants.LOW_FREQ_CUTOFF,
                                 high_cutoff: float = AudioConstants.MID_FREQ_HIGH_CUTOFF) -> Dict[str, np.ndarray]:
        """Separate audio into low / mid / high bands"""
        filters = FrequencyProcessor.create_filters(sr, low_cutoff, high_cutoff)
        bands = {}

        if 'lowpass' in filters:
            bands['low'] = sosfiltfilt(filters['lowpass'], audio)

        if 'bandpass' in filters:
            bands['mid'] = sosfiltfilt(filters['bandpass'], audio)

        if 'highpass' in filters:
            bands['high'] = sosfiltfilt(filters['highpass'], audio)

        return bands

    @staticmethod
    def biquad(filter_type: str, frequency: float, sr: int,
               q: float = 0.7071, gain_db: float = 0.0) -> np.ndarray:
        """
        Single biquad section (RBJ audio EQ cookbook) as an sos row.

        Supported types: lowpass, highpass, peaking, lowshelf, highshelf.
        Shelves use a slope of 1.
        """
        frequency = min(max(frequency, 10.0), 0.49 * sr)
        w0 = 2.0 * math.pi * frequency / sr
        cos_w0 = math.cos(w0)
        sin_w0 = math.sin(w0)
        a = 10.0 ** (gain_db / 40.0)

        if filter_type == 'lowpass':
            alpha = sin_w0 / (2.0 * q)
            b = [(1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2]
            den = [1 + alpha, -2 * cos_w0, 1 - alpha]
        elif filter_type == 'highpass':
            alpha = sin_w0 / (2.0 * q)
            b = [(1 + cos_w0) / 2, -(1 + cos_w0), (1 + cos_w0) / 2]
            den = [1 + alpha, -2 * cos_w0, 1 - alpha]
        elif filter_type == 'peaking':
            alpha = sin_w0 / (2.0 * q)
            b = [1 + alpha * a, -2 * cos_w0, 1 - alpha * a]
            den = [1 + alpha / a, -2 * cos_w0, 1 - alpha / a]
        elif filter_type in ('lowshelf', 'highshelf'):
            alpha = sin_w0 / 2.0 * math.sqrt(2.0)
            k = 2.0 * math.sqrt(a) * alpha
            if filter_type == 'lowshelf':
                b = [a * ((a + 1) - (a - 1) * cos_w0 + k),
                     2 * a * ((a - 1) - (a + 1) * cos_w0),
                     a * ((a + 1) - (a - 1) * cos_w0 - k)]
                den = [(a + 1) + (a - 1) * cos_w0 + k,
                       -2 * ((a - 1) + (a + 1) * cos_w0),
                       (a + 1) + (a - 1) * cos_w0 - k]
            else:
                b = [a * ((a + 1) + (a - 1) * cos_w0 + k),
                     -2 * a * ((a - 1) + (a + 1) * cos_w0),
                     a * ((a + 1) + (a - 1) * cos_w0 - k)]
                den = [(a + 1) - (a - 1) * cos_w0 + k,
                       2 * ((a - 1) - (a + 1) * cos_w0),
                       (a + 1) - (a - 1) * cos_w0 - k]
        else:
            raise ValueError(f"Unknown filter type: {filter_type}")

        a0 = den[0]
        return np.array([[b[0] / a0, b[1] / a0, b[2] / a0, 1.0, den[1] / a0, den[2] / a0]])
