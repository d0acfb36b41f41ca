"""
Tests for signal-processing stages.
"""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from voccal.audio.stages import (
    BiquadFilterStage,
    CompressorStage,
    ConvolverStage,
    DelayStage,
    GainStage,
    TremoloStage,
    WaveShaperStage,
    apply_playback_rate,
    make_bit_reduction_curve,
    make_distortion_curve,
    make_impulse_response
)


SAMPLE_RATE = 16000


def sine(frequency, duration=0.5, amplitude=0.5, sample_rate=SAMPLE_RATE, channels=1):
    """Sine test tone of shape (frames, channels)."""
    t = np.arange(int(duration * sample_rate)) / sample_rate
    tone = amplitude * np.sin(2 * np.pi * frequency * t)
    return np.tile(tone[:, np.newaxis], (1, channels))


def rms(samples):
    return float(np.sqrt(np.mean(np.square(samples))))


class TestBiquadFilterStage:
    """Test EQ stages."""

    def test_lowpass_attenuates_highs(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "lowpass", frequency=1000)
        tone = sine(6000)
        out = stage.process(tone)

        assert out.shape == tone.shape
        # Skip the start-up transient
        assert rms(out[800:]) < 0.1 * rms(tone[800:])

    def test_highpass_attenuates_lows(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "highpass", frequency=1000)
        tone = sine(100)
        out = stage.process(tone)

        assert rms(out[800:]) < 0.1 * rms(tone[800:])

    def test_peaking_boosts_center(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "peaking", frequency=3000, q=1, gain_db=6)
        tone = sine(3000)
        out = stage.process(tone)

        assert rms(out[800:]) > 1.8 * rms(tone[800:])

    def test_lowshelf_boosts_bass(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "lowshelf", frequency=200, gain_db=10)
        tone = sine(50, duration=1.0)
        out = stage.process(tone)

        assert rms(out[4000:]) > 2.5 * rms(tone[4000:])

    def test_highshelf_cut(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "highshelf", frequency=3000, gain_db=-8)
        tone = sine(6000)
        out = stage.process(tone)

        assert rms(out[800:]) < 0.6 * rms(tone[800:])

    def test_bandpass_passes_center(self):
        stage = BiquadFilterStage(SAMPLE_RATE, "bandpass", frequency=1200, q=5)
        center = stage.process(sine(1200))
        off = BiquadFilterStage(SAMPLE_RATE, "bandpass", frequency=1200, q=5).process(sine(100))

        assert rms(center[800:]) > 0.8 * rms(sine(1200)[800:])
        assert rms(off[800:]) < 0.1 * rms(sine(100)[800:])

    def test_frequency_above_nyquist_is_clamped(self):
        """Shelves above Nyquist still produce a stable filter."""
        stage = BiquadFilterStage(8000, "highshelf", frequency=10000, gain_db=4)
        out = stage.process(sine(1000, sample_rate=8000))
        assert np.all(np.isfinite(out))

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            BiquadFilterStage(SAMPLE_RATE, "notch", frequency=1000)

    def test_input_not_mutated(self):
        tone = sine(440)
        original = tone.copy()
        BiquadFilterStage(SAMPLE_RATE, "lowpass", frequency=500).process(tone)
        assert_array_equal(tone, original)


class TestCompressorStage:
    """Test dynamics compression."""

    def test_reduces_loud_signal(self):
        stage = CompressorStage(SAMPLE_RATE, threshold_db=-24, ratio=12)
        tone = sine(440, amplitude=0.9)
        out = stage.process(tone)

        assert out.shape == tone.shape
        assert np.max(np.abs(out[4000:])) < 0.5 * np.max(np.abs(tone[4000:]))

    def test_passes_quiet_signal(self):
        stage = CompressorStage(SAMPLE_RATE, threshold_db=-24, knee_db=30, ratio=12)
        tone = sine(440, amplitude=0.001)
        out = stage.process(tone)

        assert_allclose(out, tone, rtol=1e-6, atol=1e-9)

    def test_static_curve(self):
        """Hard knee above threshold follows 1/ratio slope."""
        stage = CompressorStage(SAMPLE_RATE, threshold_db=-20, knee_db=0, ratio=4)
        gain = stage.gain_db(np.array([-40.0, -20.0, 0.0]))
        assert_allclose(gain, [0.0, 0.0, -15.0])

    def test_soft_knee_continuous(self):
        stage = CompressorStage(SAMPLE_RATE, threshold_db=-24, knee_db=30, ratio=12)
        levels = np.array([-39.0, -39.0 + 1e-6, -9.0 - 1e-6, -9.0])
        gain = stage.gain_db(levels)
        assert abs(gain[0] - gain[1]) < 1e-4
        assert abs(gain[2] - gain[3]) < 1e-4

    def test_channels_linked(self):
        """Both channels get the same gain reduction."""
        stage = CompressorStage(SAMPLE_RATE, threshold_db=-30, ratio=8)
        left = sine(440, amplitude=0.9)
        right = sine(440, amplitude=0.1)
        out = stage.process(np.hstack([left, right]))

        mask = np.abs(right[:, 0]) > 0.01
        assert_allclose(
            out[mask, 0] / left[mask, 0],
            out[mask, 1] / right[mask, 0],
            rtol=1e-6
        )

    def test_invalid_ratio(self):
        with pytest.raises(ValueError):
            CompressorStage(SAMPLE_RATE, ratio=0.5)

    def test_release_resets_envelope(self):
        stage = CompressorStage(SAMPLE_RATE)
        stage.process(sine(440, amplitude=0.9))
        assert stage.envelope > 0
        stage.release()
        assert stage.envelope == 0.0


class TestGainAndTremolo:
    """Test gain-type stages."""

    def test_gain(self):
        tone = sine(440)
        assert_allclose(GainStage(SAMPLE_RATE, 1.3).process(tone), tone * 1.3)

    def test_tremolo_envelope(self):
        stage = TremoloStage(SAMPLE_RATE, rate_hz=7, depth=0.25)
        env = stage.envelope(SAMPLE_RATE)

        assert env[0] == pytest.approx(1.0)
        assert np.max(env) == pytest.approx(1.25, abs=1e-3)
        assert np.min(env) == pytest.approx(0.75, abs=1e-3)

    def test_tremolo_modulates(self):
        stage = TremoloStage(SAMPLE_RATE, rate_hz=3, depth=0.15)
        dc = np.full((SAMPLE_RATE, 2), 0.5)
        out = stage.process(dc)
        assert_allclose(out[:, 0], 0.5 * stage.envelope(SAMPLE_RATE))
        assert_allclose(out[:, 0], out[:, 1])


class TestWaveShaper:
    """Test waveshaping curves."""

    def test_distortion_curve_shape(self):
        curve = make_distortion_curve(30)
        assert len(curve) == 44100
        assert np.all(np.diff(curve) > 0)
        assert np.max(np.abs(curve)) < 1.0

    def test_distortion_curve_formula(self):
        curve = make_distortion_curve(40, n_samples=4)
        x = np.array([-1.0, -0.5, 0.0, 0.5])
        deg = math.pi / 180
        expected = (43 * x * 20 * deg) / (math.pi + 40 * np.abs(x))
        assert_allclose(curve, expected)

    def test_bit_reduction_levels(self):
        curve = make_bit_reduction_curve(8)
        steps = curve * 256
        assert_allclose(steps, np.round(steps))
        assert len(np.unique(curve)) <= 513

    def test_interpolates_curve(self):
        stage = WaveShaperStage(SAMPLE_RATE, np.array([-1.0, 0.0, 1.0]) * 0.5)
        out = stage.process(np.array([[-1.0], [-0.5], [0.0], [0.25], [1.0]]))
        assert_allclose(out[:, 0], [-0.5, -0.25, 0.0, 0.125, 0.5])

    def test_clamps_outside_range(self):
        stage = WaveShaperStage(SAMPLE_RATE, np.array([-0.3, 0.3]))
        out = stage.process(np.array([[-4.0], [4.0]]))
        assert_allclose(out[:, 0], [-0.3, 0.3])

    def test_curve_too_short(self):
        with pytest.raises(ValueError):
            WaveShaperStage(SAMPLE_RATE, np.array([1.0]))


class TestDelayStage:
    """Test feedback delay line."""

    def test_echo_taps(self):
        """An impulse repeats every delay period, scaled by feedback."""
        stage = DelayStage(1000, delay_time=0.01, feedback=0.5, mix=1.0)
        impulse = np.zeros((50, 1))
        impulse[0] = 1.0
        out = stage.process(impulse)[:, 0]

        assert out[10] == pytest.approx(1.0)
        assert out[20] == pytest.approx(0.5)
        assert out[30] == pytest.approx(0.25)
        assert out[5] == pytest.approx(0.0)

    def test_dry_mix(self):
        stage = DelayStage(1000, delay_time=0.01, feedback=0.0, mix=0.0)
        tone = sine(50, sample_rate=1000)
        assert_allclose(stage.process(tone), tone)

    def test_decays(self):
        stage = DelayStage(SAMPLE_RATE, delay_time=0.15, feedback=0.25, mix=0.4)
        burst = np.zeros((SAMPLE_RATE * 2, 1))
        burst[:800] = sine(440, duration=0.05)
        out = stage.process(burst)
        assert np.max(np.abs(out[-4000:])) < 0.01

    @pytest.mark.parametrize("delay_time,feedback", [
        (0.3, 0.2),
        (0.5, 0.2),
        (0.0, 0.2),
        (0.1, 1.0),
        (0.1, 1.5),
        (0.1, -0.1),
    ])
    def test_rejects_unstable_settings(self, delay_time, feedback):
        with pytest.raises(ValueError):
            DelayStage(SAMPLE_RATE, delay_time=delay_time, feedback=feedback)

    def test_max_delay_bounded(self):
        with pytest.raises(ValueError):
            DelayStage(SAMPLE_RATE, delay_time=0.1, feedback=0.2, max_delay=0.5)

    def test_modulated_delay(self):
        stage = DelayStage(
            SAMPLE_RATE, delay_time=0.015, feedback=0.15, mix=0.5, max_delay=0.05,
            modulation_rate=1.2, modulation_depth=0.002
        )
        delays = stage.delay_samples(SAMPLE_RATE)
        assert delays.min() >= 0.013 * SAMPLE_RATE - 1e-6
        assert delays.max() <= 0.017 * SAMPLE_RATE + 1e-6

        out = stage.process(sine(300, channels=2))
        assert out.shape == (8000, 2)
        assert np.all(np.isfinite(out))


class TestConvolverStage:
    """Test convolution reverb."""

    def test_unit_impulse_is_identity(self):
        stage = ConvolverStage(SAMPLE_RATE, np.array([1.0, 0.0, 0.0]), normalize=False)
        tone = sine(440, channels=2)
        assert_allclose(stage.process(tone), tone, atol=1e-12)

    def test_output_trimmed_to_input(self):
        impulse = make_impulse_response(SAMPLE_RATE, 0.6, 0.3, rng=np.random.default_rng(1))
        stage = ConvolverStage(SAMPLE_RATE, impulse)
        out = stage.process(sine(440, duration=0.25))
        assert out.shape == (4000, 1)

    def test_normalization_scale(self):
        impulse = np.full((100, 2), 0.5)
        scale = ConvolverStage.normalization_scale(impulse, 44100)
        assert scale == pytest.approx(0.00125 / 0.5)

    def test_impulse_response_envelope(self):
        impulse = make_impulse_response(SAMPLE_RATE, 1.2, 0.4, channels=2, rng=np.random.default_rng(7))
        assert impulse.shape == (int(SAMPLE_RATE * 1.2), 2)
        assert np.max(np.abs(impulse)) <= 1.0
        head = np.mean(np.abs(impulse[:1000]))
        tail = np.mean(np.abs(impulse[-1000:]))
        assert tail < head

    def test_impulse_response_seeded(self):
        a = make_impulse_response(SAMPLE_RATE, 0.1, 0.3, rng=np.random.default_rng(3))
        b = make_impulse_response(SAMPLE_RATE, 0.1, 0.3, rng=np.random.default_rng(3))
        assert_array_equal(a, b)


class TestPlaybackRate:
    """Test source time-stretch."""

    @pytest.mark.parametrize("rate", [0.75, 0.85, 0.9, 0.95, 1.1, 1.35])
    def test_length_law(self, rate):
        source = sine(220, duration=1.0)
        out = apply_playback_rate(source, rate)
        assert out.shape[0] == math.floor(source.shape[0] / rate)

    def test_double_speed_skips_samples(self):
        source = np.arange(10, dtype=np.float64).reshape(-1, 1)
        out = apply_playback_rate(source, 2.0)
        assert_allclose(out[:, 0], [0, 2, 4, 6, 8])

    def test_half_speed_interpolates(self):
        source = np.arange(4, dtype=np.float64).reshape(-1, 1)
        out = apply_playback_rate(source, 0.5)
        assert_allclose(out[:7, 0], [0, 0.5, 1, 1.5, 2, 2.5, 3])

    def test_unity_rate_copies(self):
        source = sine(440)
        out = apply_playback_rate(source, 1.0)
        assert_array_equal(out, source)
        assert out is not source

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            apply_playback_rate(sine(440), 0.0)


class TestStageLifecycle:
    """Test release semantics shared by all stages."""

    def test_process_after_release(self):
        stage = GainStage(SAMPLE_RATE, 2.0)
        stage.release()
        with pytest.raises(RuntimeError):
            stage.process(sine(440))

    def test_release_idempotent(self):
        stage = ConvolverStage(SAMPLE_RATE, np.ones(4))
        stage.release()
        stage.release()
        assert stage.released

    def test_empty_input(self):
        out = CompressorStage(SAMPLE_RATE).process(np.zeros((0, 2)))
        assert out.shape == (0, 2)
