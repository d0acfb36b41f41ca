"""
Filter chains: per-effect recipes and the builder that instantiates them.

A recipe is a plain ordered tuple of stage specs. Building a chain creates
a fresh stage for every spec, so no stage is ever shared between chains.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from voccal.audio.catalog import FilterDescriptor, resolve_filter
from voccal.audio.stages import (
    BiquadFilterStage,
    CompressorStage,
    ConvolverStage,
    DelayStage,
    GainStage,
    Stage,
    TremoloStage,
    WaveShaperStage,
    make_bit_reduction_curve,
    make_distortion_curve,
    make_impulse_response,
)
from voccal.core.logging import get_logger

logger = get_logger(__name__)


class ProcessingContext(Protocol):
    """What a chain needs from the context it is built against."""

    sample_rate: int
    rng: np.random.Generator


# Stage specs

@dataclass(frozen=True)
class EQ:
    type: str
    frequency: float
    q: float = 1.0
    gain: float = 0.0

    def create(self, context: ProcessingContext) -> Stage:
        return BiquadFilterStage(
            context.sample_rate,
            filter_type=self.type,
            frequency=self.frequency,
            q=self.q,
            gain_db=self.gain,
        )


@dataclass(frozen=True)
class Compressor:
    threshold: float = -24.0
    ratio: float = 12.0
    knee: float = 30.0
    attack: float = 0.003
    release: float = 0.25

    def create(self, context: ProcessingContext) -> Stage:
        return CompressorStage(
            context.sample_rate,
            threshold_db=self.threshold,
            knee_db=self.knee,
            ratio=self.ratio,
            attack=self.attack,
            release=self.release,
        )


@dataclass(frozen=True)
class Gain:
    value: float

    def create(self, context: ProcessingContext) -> Stage:
        return GainStage(context.sample_rate, self.value)


@dataclass(frozen=True)
class Waveshaper:
    """Either a soft-clip ``distortion`` amount or a ``bits`` reduction."""
    distortion: Optional[float] = None
    bits: Optional[int] = None

    def curve(self) -> NDArray:
        if self.bits is not None:
            return make_bit_reduction_curve(self.bits)
        return make_distortion_curve(self.distortion or 0.0)

    def create(self, context: ProcessingContext) -> Stage:
        return WaveShaperStage(context.sample_rate, self.curve())


@dataclass(frozen=True)
class Tremolo:
    rate: float
    depth: float

    def create(self, context: ProcessingContext) -> Stage:
        return TremoloStage(context.sample_rate, rate_hz=self.rate, depth=self.depth)


@dataclass(frozen=True)
class Delay:
    time: float
    feedback: float
    mix: float = 0.5
    max_time: float = 0.3
    modulation_rate: float = 0.0
    modulation_depth: float = 0.0

    def create(self, context: ProcessingContext) -> Stage:
        return DelayStage(
            context.sample_rate,
            delay_time=self.time,
            feedback=self.feedback,
            mix=self.mix,
            max_delay=self.max_time,
            modulation_rate=self.modulation_rate,
            modulation_depth=self.modulation_depth,
        )


@dataclass(frozen=True)
class Convolution:
    """Synthetic impulse of ``duration`` seconds with decay exponent ``decay``."""
    duration: float
    decay: float

    def create(self, context: ProcessingContext) -> Stage:
        impulse = make_impulse_response(
            context.sample_rate, self.duration, self.decay, channels=2, rng=context.rng
        )
        return ConvolverStage(context.sample_rate, impulse)


StageSpec = Union[EQ, Compressor, Gain, Waveshaper, Tremolo, Delay, Convolution]


RECIPES: Dict[str, Tuple[StageSpec, ...]] = {
    # Preview-only loudness normalisation; export bypasses this entirely
    "original": (
        Compressor(threshold=-24, knee=30, ratio=3, attack=0.003, release=0.25),
    ),
    "warm": (
        EQ("lowshelf", 200, gain=4),
        EQ("highshelf", 8000, gain=-3),
        Compressor(threshold=-22, knee=20, ratio=4, attack=0.005, release=0.2),
        Gain(1.1),
    ),
    "bright": (
        EQ("peaking", 3000, q=1, gain=5),
        EQ("highshelf", 10000, gain=4),
        Compressor(threshold=-18, ratio=4),
    ),
    "radio": (
        EQ("highpass", 300),
        EQ("lowpass", 5000),
        EQ("peaking", 1500, q=1.5, gain=6),
        Waveshaper(distortion=30),
        Compressor(threshold=-25, ratio=6),
    ),
    "chipmunk": (
        EQ("highpass", 400),
        EQ("highshelf", 2000, gain=8),
        EQ("peaking", 150, q=1, gain=-10),
        Compressor(threshold=-18, knee=15, ratio=10, attack=0.003, release=0.1),
        Gain(0.9),
    ),
    "deep": (
        EQ("lowpass", 1200),
        EQ("lowshelf", 200, gain=10),
        EQ("highshelf", 3000, gain=-8),
        Compressor(threshold=-22, knee=25, ratio=6, attack=0.005, release=0.2),
        Gain(1.3),
    ),
    "robot": (
        EQ("bandpass", 1200, q=5),
        Tremolo(rate=7, depth=0.25),
        Waveshaper(bits=8),
        Compressor(threshold=-18, ratio=10),
    ),
    "echo": (
        Delay(time=0.15, feedback=0.25, mix=0.4),
        Convolution(duration=0.6, decay=0.3),
    ),
    "underwater": (
        EQ("lowpass", 2000, q=1),
        Delay(time=0.015, feedback=0.15, mix=0.5, max_time=0.05,
              modulation_rate=1.2, modulation_depth=0.002),
    ),
    "telephone": (
        EQ("highpass", 300),
        EQ("lowpass", 3400),
        EQ("peaking", 1000, q=2, gain=8),
        Waveshaper(distortion=35),
        Compressor(threshold=-30, ratio=12),
    ),
    "stadium": (
        EQ("bandpass", 1800, q=1.2),
        EQ("peaking", 2500, q=1.5, gain=6),
        Delay(time=0.08, feedback=0.2, mix=0.35, max_time=0.25),
        Waveshaper(distortion=35),
        Compressor(threshold=-20, ratio=8),
    ),
    "space": (
        EQ("highpass", 500),
        EQ("lowpass", 4000),
        Waveshaper(distortion=40),
        Convolution(duration=1.2, decay=0.4),
        Tremolo(rate=3, depth=0.15),
        Compressor(threshold=-22, ratio=8),
    ),
}


class FilterChain:
    """
    Ordered stages implementing one effect for one preview or render.

    Chains are never reused: once released, processing raises.
    """

    def __init__(self, descriptor: FilterDescriptor, stages: Sequence[Stage]):
        self.descriptor = descriptor
        self.stages: List[Stage] = list(stages)
        self.released = False

    @property
    def filter_id(self) -> str:
        return self.descriptor.id

    @property
    def playback_rate(self) -> float:
        return self.descriptor.playback_rate

    def process(self, samples: NDArray) -> NDArray:
        """Run samples through every stage in order."""
        if self.released:
            raise RuntimeError(f"Filter chain {self.filter_id!r} used after release")
        result = np.asarray(samples, dtype=np.float64)
        for stage in self.stages:
            result = stage.process(result)
        return result

    def release(self) -> None:
        """Disconnect every stage. Idempotent."""
        if self.released:
            return
        for stage in self.stages:
            stage.release()
        self.stages = []
        self.released = True

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        return f"<FilterChain {self.filter_id} stages={len(self.stages)}>"


class ChainBuilder:
    """Builds fresh filter chains from the recipe table."""

    def __init__(self, recipes: Optional[Dict[str, Tuple[StageSpec, ...]]] = None):
        self.recipes = recipes if recipes is not None else RECIPES

    def build(self, filter_id: str, context: ProcessingContext) -> FilterChain:
        """
        Build a new chain for a filter against a processing context.

        Building never starts audio. If any stage fails to construct,
        the stages already built are released and the error propagates.

        Args:
            filter_id: Catalog id
            context: Live or offline processing context

        Returns:
            New FilterChain

        Raises:
            UnknownFilterError: If the id is not in the catalog
        """
        descriptor = resolve_filter(filter_id)
        specs = self.recipes.get(descriptor.id, ())

        stages: List[Stage] = []
        try:
            for spec in specs:
                stages.append(spec.create(context))
        except Exception:
            for stage in stages:
                stage.release()
            raise

        logger.debug(
            "filter_chain_built",
            filter_id=descriptor.id,
            stages=[stage.kind for stage in stages],
            sample_rate=context.sample_rate,
        )
        return FilterChain(descriptor, stages)
