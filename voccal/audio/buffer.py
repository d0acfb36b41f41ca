"""
Immutable multi-channel audio buffer.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Fixed-length, multi-channel float32 audio at a known sample rate.

    Samples are stored frame-major as ``(frames, channels)`` and the
    array is made read-only, so stages always allocate their output.
    """

    samples: NDArray[np.float32]
    sample_rate: int

    def __post_init__(self) -> None:
        data = np.array(self.samples, dtype=np.float32)
        if data.ndim == 1:
            data = data.reshape(-1, 1)
        if data.ndim != 2 or data.shape[1] < 1:
            raise ValueError(
                f"Expected samples of shape (frames, channels), got {data.shape}"
            )
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")

        data.setflags(write=False)
        object.__setattr__(self, "samples", data)

    @property
    def frame_count(self) -> int:
        return self.samples.shape[0]

    @property
    def channels(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.frame_count / self.sample_rate

    def channel(self, index: int) -> NDArray[np.float32]:
        """Read-only view of one channel."""
        return self.samples[:, index]

    @classmethod
    def silence(cls, frames: int, channels: int = 1, sample_rate: int = 44100) -> "AudioBuffer":
        """Create a buffer of zeros."""
        return cls(np.zeros((frames, channels), dtype=np.float32), sample_rate)
