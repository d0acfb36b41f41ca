"""
Signal-processing stages for voice filter chains.

Every stage reads a ``(frames, channels)`` float array and returns a
newly allocated array of the same shape. Stages hold state only for the
lifetime of one preview or render.
"""

from abc import ABC, abstractmethod
import math
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import signal

# Browser convolver calibration (-58 dB) and its reference rate
CONVOLVER_GAIN_CALIBRATION = 0.00125
CONVOLVER_CALIBRATION_RATE = 44100.0
CONVOLVER_MIN_POWER = 0.000125

MAX_DELAY_TIME = 0.3  # seconds
CURVE_LENGTH = 44100

BIQUAD_KINDS = ("lowpass", "highpass", "bandpass", "lowshelf", "highshelf", "peaking")


class Stage(ABC):
    """Base class for chain stages."""

    kind = "stage"

    def __init__(self, sample_rate: int):
        """
        Initialize stage.

        Args:
            sample_rate: Audio sample rate in Hz
        """
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        self.sample_rate = sample_rate
        self.released = False

    @abstractmethod
    def _process(self, samples: NDArray) -> NDArray:
        pass

    def process(self, samples: NDArray) -> NDArray:
        """
        Process audio samples.

        Args:
            samples: Input audio of shape (frames, channels)

        Returns:
            New array of processed samples, same shape
        """
        if self.released:
            raise RuntimeError(f"{self.kind} stage used after release")
        data = np.asarray(samples, dtype=np.float64)
        if data.ndim != 2:
            raise ValueError(f"Expected (frames, channels) samples, got {data.shape}")
        if data.shape[0] == 0:
            return data.copy()
        return self._process(data)

    def release(self) -> None:
        """Disconnect the stage and drop any internal state. Idempotent."""
        self.released = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} sample_rate={self.sample_rate}>"


class BiquadFilterStage(Stage):
    """
    Second-order IIR filter using the Audio EQ Cookbook formulas.

    ``q`` is interpreted the way browser biquads do: in dB for lowpass and
    highpass (resonance), as a linear quality factor for bandpass and
    peaking, and ignored by the shelves (slope fixed at 1).
    """

    kind = "biquad"

    def __init__(
        self,
        sample_rate: int,
        filter_type: str = "lowpass",
        frequency: float = 350.0,
        q: float = 1.0,
        gain_db: float = 0.0
    ):
        super().__init__(sample_rate)
        if filter_type not in BIQUAD_KINDS:
            raise ValueError(f"Unknown biquad type: {filter_type!r}")
        self.filter_type = filter_type
        self.frequency = frequency
        self.q = q
        self.gain_db = gain_db
        self.b, self.a = self._design()

    def _design(self):
        nyquist = self.sample_rate / 2.0
        freq = float(np.clip(self.frequency, 1.0, nyquist * 0.999))
        w0 = 2.0 * math.pi * freq / self.sample_rate
        cos_w0 = math.cos(w0)
        sin_w0 = math.sin(w0)
        A = 10.0 ** (self.gain_db / 40.0)

        if self.filter_type == "lowpass":
            alpha = sin_w0 / (2.0 * 10.0 ** (self.q / 20.0))
            b = [(1 - cos_w0) / 2, 1 - cos_w0, (1 - cos_w0) / 2]
            a = [1 + alpha, -2 * cos_w0, 1 - alpha]
        elif self.filter_type == "highpass":
            alpha = sin_w0 / (2.0 * 10.0 ** (self.q / 20.0))
            b = [(1 + cos_w0) / 2, -(1 + cos_w0), (1 + cos_w0) / 2]
            a = [1 + alpha, -2 * cos_w0, 1 - alpha]
        elif self.filter_type == "bandpass":
            alpha = sin_w0 / (2.0 * max(self.q, 1e-4))
            b = [alpha, 0.0, -alpha]
            a = [1 + alpha, -2 * cos_w0, 1 - alpha]
        elif self.filter_type == "peaking":
            alpha = sin_w0 / (2.0 * max(self.q, 1e-4))
            b = [1 + alpha * A, -2 * cos_w0, 1 - alpha * A]
            a = [1 + alpha / A, -2 * cos_w0, 1 - alpha / A]
        else:
            # Shelves with slope S = 1
            alpha = sin_w0 / 2.0 * math.sqrt(2.0)
            k = 2.0 * math.sqrt(A) * alpha
            if self.filter_type == "lowshelf":
                b = [
                    A * ((A + 1) - (A - 1) * cos_w0 + k),
                    2 * A * ((A - 1) - (A + 1) * cos_w0),
                    A * ((A + 1) - (A - 1) * cos_w0 - k),
                ]
                a = [
                    (A + 1) + (A - 1) * cos_w0 + k,
                    -2 * ((A - 1) + (A + 1) * cos_w0),
                    (A + 1) + (A - 1) * cos_w0 - k,
                ]
            else:
                b = [
                    A * ((A + 1) + (A - 1) * cos_w0 + k),
                    -2 * A * ((A - 1) + (A + 1) * cos_w0),
                    A * ((A + 1) + (A - 1) * cos_w0 - k),
                ]
                a = [
                    (A + 1) - (A - 1) * cos_w0 + k,
                    2 * ((A - 1) - (A + 1) * cos_w0),
                    (A + 1) - (A - 1) * cos_w0 - k,
                ]

        b = np.asarray(b, dtype=np.float64)
        a = np.asarray(a, dtype=np.float64)
        return b / a[0], a / a[0]

    def _process(self, samples: NDArray) -> NDArray:
        return signal.lfilter(self.b, self.a, samples, axis=0)

    def __repr__(self) -> str:
        return (
            f"<BiquadFilterStage {self.filter_type} f={self.frequency} "
            f"q={self.q} gain={self.gain_db}dB>"
        )


class CompressorStage(Stage):
    """
    Soft-knee dynamic range compressor.

    The detector is a peak envelope follower linked across channels, so
    stereo images do not shift under gain reduction.
    """

    kind = "compressor"

    def __init__(
        self,
        sample_rate: int,
        threshold_db: float = -24.0,
        knee_db: float = 30.0,
        ratio: float = 12.0,
        attack: float = 0.003,
        release: float = 0.25
    ):
        """
        Initialize compressor.

        Args:
            sample_rate: Audio sample rate
            threshold_db: Level above which gain is reduced (dBFS)
            knee_db: Width of the soft knee around the threshold (dB)
            ratio: Compression ratio (>= 1)
            attack: Attack time in seconds
            release: Release time in seconds
        """
        super().__init__(sample_rate)
        if ratio < 1.0:
            raise ValueError(f"Compressor ratio must be >= 1, got {ratio}")
        if attack <= 0 or release <= 0:
            raise ValueError("Attack and release times must be positive")
        self.threshold_db = threshold_db
        self.knee_db = max(0.0, knee_db)
        self.ratio = ratio
        self.attack = attack
        self.release_time = release

        self.attack_coeff = math.exp(-1.0 / (attack * sample_rate))
        self.release_coeff = math.exp(-1.0 / (release * sample_rate))

        self.envelope = 0.0

    def _envelope(self, levels: NDArray) -> NDArray:
        out = np.empty_like(levels)
        env = self.envelope
        att = self.attack_coeff
        rel = self.release_coeff
        for i, level in enumerate(levels.tolist()):
            coeff = att if level > env else rel
            env = coeff * env + (1.0 - coeff) * level
            out[i] = env
        self.envelope = env
        return out

    def gain_db(self, level_db: NDArray) -> NDArray:
        """Static gain curve: gain change in dB for an input level in dB."""
        x = np.asarray(level_db, dtype=np.float64)
        over = x - self.threshold_db
        slope = 1.0 / self.ratio - 1.0
        gain = np.where(over > 0, slope * over, 0.0)
        if self.knee_db > 0:
            half = self.knee_db / 2.0
            in_knee = np.abs(over) <= half
            knee_gain = slope * (over + half) ** 2 / (2.0 * self.knee_db)
            gain = np.where(in_knee, knee_gain, gain)
        return gain

    def _process(self, samples: NDArray) -> NDArray:
        levels = np.max(np.abs(samples), axis=1)
        env = self._envelope(levels)
        env_db = 20.0 * np.log10(np.maximum(env, 1e-9))
        gain = 10.0 ** (self.gain_db(env_db) / 20.0)
        return samples * gain[:, np.newaxis]

    def release(self) -> None:
        super().release()
        self.envelope = 0.0


class GainStage(Stage):
    """Constant gain."""

    kind = "gain"

    def __init__(self, sample_rate: int, value: float = 1.0):
        super().__init__(sample_rate)
        self.value = value

    def _process(self, samples: NDArray) -> NDArray:
        return samples * self.value


class WaveShaperStage(Stage):
    """
    Nonlinear waveshaper driven by a lookup curve over [-1, 1].

    Inputs between curve points are linearly interpolated; inputs outside
    [-1, 1] take the end values.
    """

    kind = "waveshaper"

    def __init__(self, sample_rate: int, curve: NDArray):
        super().__init__(sample_rate)
        curve = np.asarray(curve, dtype=np.float64)
        if curve.ndim != 1 or len(curve) < 2:
            raise ValueError("Waveshaper curve needs at least two points")
        self.curve = curve
        self._xp = np.linspace(-1.0, 1.0, len(curve))

    def _process(self, samples: NDArray) -> NDArray:
        return np.interp(samples, self._xp, self.curve)

    def release(self) -> None:
        super().release()
        self.curve = None
        self._xp = None


class TremoloStage(Stage):
    """
    Amplitude modulation by a sine LFO.

    The LFO is precomputed as a gain envelope ``1 + depth * sin(2 pi f t)``
    sampled at the audio rate and multiplied elementwise.
    """

    kind = "tremolo"

    def __init__(self, sample_rate: int, rate_hz: float = 5.0, depth: float = 0.25):
        super().__init__(sample_rate)
        if rate_hz <= 0:
            raise ValueError(f"LFO rate must be positive, got {rate_hz}")
        self.rate_hz = rate_hz
        self.depth = depth

    def envelope(self, frames: int) -> NDArray:
        t = np.arange(frames) / self.sample_rate
        return 1.0 + self.depth * np.sin(2.0 * np.pi * self.rate_hz * t)

    def _process(self, samples: NDArray) -> NDArray:
        return samples * self.envelope(samples.shape[0])[:, np.newaxis]


class DelayStage(Stage):
    """
    Feedback delay line mixed with the dry signal.

    ``wet[n] = x[n - d] + feedback * wet[n - d]`` and
    ``y = (1 - mix) * x + mix * wet``. The delay time may be modulated by a
    sine LFO; reads between samples are linearly interpolated.

    The delay never reaches ``max_delay`` (at most 0.3 s) and feedback
    stays strictly below 1, so the tail always decays.
    """

    kind = "delay"

    def __init__(
        self,
        sample_rate: int,
        delay_time: float = 0.15,
        feedback: float = 0.25,
        mix: float = 0.5,
        max_delay: float = MAX_DELAY_TIME,
        modulation_rate: float = 0.0,
        modulation_depth: float = 0.0
    ):
        """
        Initialize delay.

        Args:
            sample_rate: Audio sample rate
            delay_time: Delay time in seconds
            feedback: Feedback gain, 0 <= feedback < 1
            mix: Wet/dry mix (0-1)
            max_delay: Upper bound on the delay time, at most 0.3 s
            modulation_rate: Delay-time LFO rate in Hz (0 disables)
            modulation_depth: Delay-time LFO depth in seconds
        """
        super().__init__(sample_rate)
        if not 0.0 < max_delay <= MAX_DELAY_TIME:
            raise ValueError(f"max_delay must be in (0, {MAX_DELAY_TIME}], got {max_delay}")
        longest = delay_time + abs(modulation_depth)
        shortest = delay_time - abs(modulation_depth)
        if shortest <= 0.0 or longest >= max_delay:
            raise ValueError(
                f"Delay time must stay within (0, {max_delay}) s, "
                f"got {delay_time} +/- {modulation_depth}"
            )
        if not 0.0 <= feedback < 1.0:
            raise ValueError(f"Feedback must be in [0, 1), got {feedback}")
        self.delay_time = delay_time
        self.feedback = feedback
        self.mix = mix
        self.max_delay = max_delay
        self.modulation_rate = modulation_rate
        self.modulation_depth = modulation_depth

    def delay_samples(self, frames: int) -> NDArray:
        """Delay in (fractional) samples for each output frame."""
        base = np.full(frames, self.delay_time * self.sample_rate)
        if self.modulation_rate > 0 and self.modulation_depth != 0:
            t = np.arange(frames) / self.sample_rate
            base = base + self.modulation_depth * self.sample_rate * np.sin(
                2.0 * np.pi * self.modulation_rate * t
            )
        return base

    def _process(self, samples: NDArray) -> NDArray:
        frames = samples.shape[0]
        delays = self.delay_samples(frames)
        wet = np.zeros_like(samples)

        # Every read lands before the current block, so each block can be
        # computed at once from already-written history.
        block = max(1, int(np.floor(delays.min())) - 1)

        for start in range(0, frames, block):
            idx = np.arange(start, min(start + block, frames))
            pos = idx - delays[idx]
            i0 = np.floor(pos).astype(np.int64)
            frac = (pos - i0)[:, np.newaxis]
            i1 = i0 + 1

            x0 = _read(samples, i0)
            x1 = _read(samples, i1)
            w0 = _read(wet, i0)
            w1 = _read(wet, i1)

            wet[idx] = (x0 + frac * (x1 - x0)) + self.feedback * (w0 + frac * (w1 - w0))

        return (1.0 - self.mix) * samples + self.mix * wet


def _read(data: NDArray, indices: NDArray) -> NDArray:
    """Gather rows, treating negative indices as silence."""
    valid = indices >= 0
    rows = data[np.clip(indices, 0, data.shape[0] - 1)]
    return np.where(valid[:, np.newaxis], rows, 0.0)


class ConvolverStage(Stage):
    """
    Convolution against an impulse response (fully wet).

    The impulse is power-normalised the way browser convolvers do, so
    noisy synthetic impulses land at a sensible level.
    """

    kind = "convolver"

    def __init__(self, sample_rate: int, impulse: NDArray, normalize: bool = True):
        super().__init__(sample_rate)
        impulse = np.asarray(impulse, dtype=np.float64)
        if impulse.ndim == 1:
            impulse = impulse.reshape(-1, 1)
        if impulse.shape[0] == 0:
            raise ValueError("Impulse response is empty")
        self.impulse = impulse
        self.scale = self.normalization_scale(impulse, sample_rate) if normalize else 1.0

    @staticmethod
    def normalization_scale(impulse: NDArray, sample_rate: int) -> float:
        power = math.sqrt(float(np.sum(impulse ** 2)) / impulse.size)
        power = max(power, CONVOLVER_MIN_POWER)
        scale = CONVOLVER_GAIN_CALIBRATION / power
        return scale * CONVOLVER_CALIBRATION_RATE / sample_rate

    def _process(self, samples: NDArray) -> NDArray:
        frames, channels = samples.shape
        out = np.empty_like(samples)
        ir_channels = self.impulse.shape[1]
        for ch in range(channels):
            ir = self.impulse[:, ch % ir_channels]
            out[:, ch] = signal.fftconvolve(samples[:, ch], ir)[:frames]
        return out * self.scale

    def release(self) -> None:
        super().release()
        self.impulse = None


def make_distortion_curve(amount: float, n_samples: int = CURVE_LENGTH) -> NDArray:
    """
    Soft-clip curve: ``(3 + k) * x * 20deg / (pi + k * |x|)``.

    Args:
        amount: Drive amount (larger is harsher)
        n_samples: Curve resolution

    Returns:
        Curve of length n_samples over x in [-1, 1)
    """
    deg = math.pi / 180.0
    x = np.arange(n_samples) * 2.0 / n_samples - 1.0
    return ((3.0 + amount) * x * 20.0 * deg) / (math.pi + amount * np.abs(x))


def make_bit_reduction_curve(bits: int, n_samples: int = CURVE_LENGTH) -> NDArray:
    """Staircase curve quantising to 2**bits levels per unit."""
    levels = 2.0 ** bits
    x = np.arange(n_samples) * 2.0 / n_samples - 1.0
    # round half up
    return np.floor(x * levels + 0.5) / levels


def make_impulse_response(
    sample_rate: int,
    duration: float,
    decay: float,
    channels: int = 2,
    rng: Optional[np.random.Generator] = None
) -> NDArray:
    """
    Synthetic reverb impulse: white noise under a ``(1 - t) ** decay`` envelope.

    Args:
        sample_rate: Audio sample rate
        duration: Impulse length in seconds
        decay: Envelope exponent
        channels: Number of impulse channels
        rng: Random generator (a fresh unseeded one if omitted)

    Returns:
        Array of shape (frames, channels)
    """
    rng = rng if rng is not None else np.random.default_rng()
    length = int(sample_rate * duration)
    if length <= 0:
        raise ValueError(f"Impulse duration too short: {duration}s")
    t = np.arange(length) / length
    envelope = (1.0 - t) ** decay
    noise = rng.uniform(-1.0, 1.0, size=(length, channels))
    return noise * envelope[:, np.newaxis]


def apply_playback_rate(
    samples: NDArray,
    rate: float,
    length: Optional[int] = None
) -> NDArray:
    """
    Read the source at ``rate`` times normal speed.

    Pitch follows the rate. Reads between source samples are linearly
    interpolated; reads past the end of the source are silent.

    Args:
        samples: Source of shape (frames, channels)
        rate: Playback-rate multiplier (> 0)
        length: Output frames, defaults to floor(frames / rate)

    Returns:
        New array of shape (length, channels)
    """
    if rate <= 0:
        raise ValueError(f"Playback rate must be positive, got {rate}")
    data = np.asarray(samples, dtype=np.float64)
    frames, channels = data.shape
    if length is None:
        length = int(math.floor(frames / rate))
    if rate == 1.0 and length == frames:
        return data.copy()

    out = np.zeros((length, channels), dtype=np.float64)
    if frames == 0 or length == 0:
        return out
    positions = np.arange(length) * rate
    source_index = np.arange(frames)
    for ch in range(channels):
        out[:, ch] = np.interp(positions, source_index, data[:, ch], right=0.0)
    return out
