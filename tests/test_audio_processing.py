#!/usr/bin/env python3
"""
Tests for decoding, time stretching, loudness helpers and WAV encoding
"""

import io
import math
import struct
import wave

import numpy as np
import pytest
import soundfile as sf

from conftest import SR, create_test_track
from teknomix.core.errors import DecodeError
from teknomix.core.models import DecodedAudio
from teknomix.utils.audio_processing import AudioProcessor, FrequencyProcessor, TimeStretcher


class TestTimeStretcher:

    def test_identity_returns_same_buffer(self):
        samples = np.random.default_rng(0).normal(size=(2, 10000)).astype(np.float32)
        assert TimeStretcher().stretch(samples, 1.0) is samples
        assert TimeStretcher().stretch(samples, 1.0005) is samples

    @pytest.mark.parametrize("ratio", [125.0 / 120.0, 125.0 / 130.0, 1.5, 0.75, 2.0])
    def test_output_length(self, ratio):
        samples = np.zeros((2, 44100 * 3 + 17), dtype=np.float32)
        out = TimeStretcher().stretch(samples, ratio)
        assert out.shape == (2, math.floor(samples.shape[-1] / ratio))

    def test_mono_input_stays_mono(self):
        samples = create_test_track(5.0, 120.0)
        out = TimeStretcher().stretch(samples, 125.0 / 120.0)
        assert out.ndim == 1
        assert len(out) == math.floor(len(samples) / (125.0 / 120.0))

    def test_channels_processed_independently(self):
        left = create_test_track(4.0, 120.0, seed=1)
        stereo = np.stack([left, np.zeros_like(left)])
        out = TimeStretcher().stretch(stereo, 0.9)
        assert np.any(out[0] != 0)
        assert np.all(out[1] == 0)

    def test_constant_signal_reconstructs_in_steady_state(self):
        # Hann windows at 50% overlap sum to ~1
        samples = np.ones(44100, dtype=np.float32)
        out = TimeStretcher().stretch(samples, 1.25)
        middle = out[8192:20000]
        np.testing.assert_allclose(middle, 1.0, atol=0.01)

    def test_ratio_from_tempo_scenario(self):
        assert 125.0 / 120.0 == pytest.approx(1.0417, abs=1e-4)
        assert 125.0 / 130.0 == pytest.approx(0.9615, abs=1e-4)


class TestWavEncoding:

    def test_one_second_of_silence(self):
        data = AudioProcessor.to_wav_bytes(np.zeros((2, 44100), dtype=np.float32), 44100)

        assert len(data) == 176444
        assert data[0:4] == b"RIFF"
        assert data[8:12] == b"WAVE"
        assert data[12:16] == b"fmt "
        assert data[36:40] == b"data"
        fmt_tag, channels, rate, byte_rate, block_align, bits = struct.unpack("<HHIIHH", data[20:36])
        assert (fmt_tag, channels, rate, byte_rate, block_align, bits) == (1, 2, 44100, 176400, 4, 16)
        assert struct.unpack("<I", data[4:8])[0] == len(data) - 8

    def test_asymmetric_scaling_and_clamping(self):
        audio = np.array([[-1.0, 1.0, 0.5, -2.0, 3.0, 0.0]] * 2, dtype=np.float32)
        data = AudioProcessor.to_wav_bytes(audio, 44100)

        samples = np.frombuffer(data[44:], dtype="<i2").reshape(-1, 2)[:, 0]
        assert samples.tolist() == [-32768, 32767, 16383, -32768, 32767, 0]

    def test_interleaved_channels(self):
        audio = np.array([[0.5, 0.5], [-0.5, -0.5]], dtype=np.float32)
        data = AudioProcessor.to_wav_bytes(audio, 44100)
        samples = np.frombuffer(data[44:], dtype="<i2")
        assert samples.tolist() == [16383, -16384, 16383, -16384]

    def test_readable_as_pcm16_and_lossless_for_int16_values(self):
        rng = np.random.default_rng(3)
        audio = np.clip(rng.normal(0, 0.6, size=(2, 4410)), -1.0, 1.0).astype(np.float32)
        data = AudioProcessor.to_wav_bytes(audio, 44100)

        info = sf.info(io.BytesIO(data))
        assert (info.format, info.subtype, info.channels, info.samplerate) == ("WAV", "PCM_16", 2, 44100)

        decoded, _ = sf.read(io.BytesIO(data), dtype="int16")
        expected = np.where(audio < 0, audio * 32768.0, audio * 32767.0).astype(np.int16).T
        np.testing.assert_array_equal(decoded, expected)
        assert len(data) == 44 + expected.size * 2

    def test_mono_is_upmixed(self):
        data = AudioProcessor.to_wav_bytes(np.zeros(100, dtype=np.float32), 44100)
        with wave.open(io.BytesIO(data)) as wf:
            assert wf.getnchannels() == 2
            assert wf.getnframes() == 100


class TestLoudness:

    def test_rms_profile_buckets(self):
        samples = np.concatenate([np.full(1000, 0.5), np.zeros(1000)])
        profile = AudioProcessor.rms_profile(samples, buckets=2)
        np.testing.assert_allclose(profile, [0.5, 0.0])

    def test_rms_profile_too_short(self):
        assert len(AudioProcessor.rms_profile(np.ones(150))) == 0

    def test_auto_gain_targets_rms(self):
        samples = np.full(20000, 0.1)
        assert AudioProcessor.auto_gain(samples) == pytest.approx(2.0)
        samples = np.full(20000, 0.25)
        assert AudioProcessor.auto_gain(samples) == pytest.approx(0.8)

    def test_auto_gain_clamps(self):
        assert AudioProcessor.auto_gain(np.full(20000, 0.9)) == 0.5
        assert AudioProcessor.auto_gain(np.full(20000, 0.01)) == 2.0

    def test_auto_gain_ignores_silence(self):
        assert AudioProcessor.auto_gain(np.zeros(20000)) == 1.0


class TestDecoding:

    def test_load_mono_file(self, wav_track):
        path = wav_track(duration=2.0)
        decoded = AudioProcessor.load_audio(str(path))

        assert isinstance(decoded, DecodedAudio)
        assert decoded.sample_rate == SR
        assert decoded.channels == 1
        assert decoded.duration == pytest.approx(2.0, abs=1e-3)
        assert decoded.samples.dtype == np.float32

    def test_load_stereo_bytes(self, wav_track):
        path = wav_track(duration=1.0, channels=2)
        decoded = AudioProcessor.load_audio(path.read_bytes())
        assert decoded.channels == 2

    def test_garbage_raises_decode_error(self):
        with pytest.raises(DecodeError) as info:
            AudioProcessor.load_audio(b"definitely not audio")
        assert info.value.data["source"] == "<bytes>"

    def test_missing_file_raises_decode_error(self, tmp_path):
        with pytest.raises(DecodeError):
            AudioProcessor.load_audio(str(tmp_path / "missing.wav"))


class TestBiquad:

    def test_zero_gain_shelf_is_identity(self):
        sos = FrequencyProcessor.biquad('lowshelf', 200.0, SR, gain_db=0.0)
        np.testing.assert_allclose(sos[0, :3], sos[0, 3:], atol=1e-12)

    def test_lowpass_has_unity_dc_gain(self):
        sos = FrequencyProcessor.biquad('lowpass', 1000.0, SR)
        b, a = sos[0, :3], sos[0, 3:]
        assert b.sum() / a.sum() == pytest.approx(1.0)

    def test_highpass_blocks_dc(self):
        sos = FrequencyProcessor.biquad('highpass', 500.0, SR)
        assert sos[0, :3].sum() == pytest.approx(0.0, abs=1e-12)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            FrequencyProcessor.biquad('bandstop', 500.0, SR)
