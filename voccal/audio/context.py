"""
Audio processing contexts.

``AudioContext`` owns the live output device for previews and must be
closed explicitly by whoever created it. ``OfflineContext`` is a render
target of fixed length used by the export path.
"""

from typing import Callable, Optional, Protocol, Set, Union

import numpy as np
from numpy.typing import NDArray

from voccal.core.config import settings
from voccal.core.exceptions import DeviceError, VoccalError
from voccal.core.logging import get_logger

logger = get_logger(__name__)

# Called once when an output finishes: True if the source ran out,
# False if it was stopped.
FinishedCallback = Callable[[bool], None]


class OutputHandle(Protocol):
    """A started-or-startable stream on the output device."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


StreamFactory = Callable[..., OutputHandle]


class SoundDeviceOutput:
    """
    Plays a fixed array on a ``sounddevice`` output stream.

    The device callback copies consecutive blocks out of the array and
    stops the stream once the array is exhausted.
    """

    def __init__(
        self,
        samples: NDArray,
        sample_rate: int,
        on_finished: FinishedCallback,
        device: Optional[Union[int, str]] = None,
        block_size: int = 0
    ):
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceError(f"Audio output backend unavailable: {e}") from e

        self._sd = sd
        self._data = np.ascontiguousarray(samples, dtype=np.float32)
        self._position = 0
        self._exhausted = False
        self._on_finished = on_finished

        try:
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=self._data.shape[1],
                device=device,
                blocksize=block_size,
                dtype="float32",
                callback=self._callback,
                finished_callback=self._finished,
            )
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceError(f"Could not open output device: {e}") from e

    def _callback(self, outdata, frames, time, status):
        if status:
            logger.debug("output_stream_status", status=str(status))
        chunk = self._data[self._position:self._position + frames]
        n = len(chunk)
        outdata[:n] = chunk
        if n < frames:
            outdata[n:] = 0
            self._exhausted = True
            raise self._sd.CallbackStop
        self._position += n

    def _finished(self):
        self._on_finished(self._exhausted)

    def start(self) -> None:
        try:
            self._stream.start()
        except self._sd.PortAudioError as e:
            raise DeviceError(f"Could not start output device: {e}") from e

    def stop(self) -> None:
        self._stream.stop()

    def close(self) -> None:
        self._stream.close()


class AudioContext:
    """
    Shared live audio context for previews.

    One context per engine owner. It is never a hidden singleton: create
    it, pass it to the playback controller, and close it on teardown.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        device: Optional[Union[int, str]] = None,
        block_size: Optional[int] = None,
        stream_factory: Optional[StreamFactory] = None,
        seed: Optional[int] = None
    ):
        """
        Initialize audio context.

        Args:
            sample_rate: Device sample rate in Hz (settings default if omitted)
            device: Output device index or name (system default if omitted)
            block_size: Frames per device callback
            stream_factory: Output stream constructor, for alternative backends
            seed: Seed for synthetic impulse responses
        """
        self.sample_rate = sample_rate or settings.default_sample_rate
        self.device = device if device is not None else settings.audio_output_device
        self.block_size = block_size if block_size is not None else settings.audio_block_size
        self.stream_factory = stream_factory or SoundDeviceOutput
        self.rng = np.random.default_rng(seed if seed is not None else settings.impulse_seed)
        self.closed = False
        self._outputs: Set[OutputHandle] = set()

        logger.info(
            "audio_context_created",
            sample_rate=self.sample_rate,
            device=self.device,
            block_size=self.block_size
        )

    def open_output(self, samples: NDArray, on_finished: FinishedCallback) -> OutputHandle:
        """
        Open an output stream for an array of samples at the context rate.

        The stream is not started.

        Raises:
            DeviceError: If the context is closed or the device fails to open
        """
        if self.closed:
            raise DeviceError("Audio context is closed")
        try:
            handle = self.stream_factory(
                samples,
                self.sample_rate,
                on_finished,
                device=self.device,
                block_size=self.block_size,
            )
        except VoccalError:
            raise
        except Exception as e:
            raise DeviceError(f"Could not open output: {e}") from e
        self._outputs.add(handle)
        return handle

    def release_output(self, handle: OutputHandle) -> None:
        """Stop and close one output. Safe to call on a finished stream."""
        self._outputs.discard(handle)
        try:
            handle.stop()
        finally:
            handle.close()

    def close(self) -> None:
        """Release every open output and the device. Idempotent."""
        if self.closed:
            return
        self.closed = True
        for handle in list(self._outputs):
            try:
                self.release_output(handle)
            except Exception as e:
                logger.warning("output_release_failed", error=str(e))
        self._outputs.clear()
        logger.info("audio_context_closed")

    def __enter__(self) -> "AudioContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class OfflineContext:
    """
    Offline render target of a fixed length, channel count and rate.
    """

    def __init__(self, channels: int, length: int, sample_rate: int, seed: Optional[int] = None):
        if channels < 1:
            raise ValueError(f"Offline context needs at least one channel, got {channels}")
        if length < 0:
            raise ValueError(f"Offline context length must be >= 0, got {length}")
        self.channels = channels
        self.length = length
        self.sample_rate = sample_rate
        self.rng = np.random.default_rng(seed if seed is not None else settings.impulse_seed)

    def render(self, chain, source: NDArray) -> NDArray:
        """
        Run a chain over an already rate-adjusted source.

        Returns:
            Array of exactly (length, channels) samples
        """
        source = np.asarray(source, dtype=np.float64)
        if source.ndim != 2 or source.shape[1] != self.channels:
            raise ValueError(
                f"Source shape {source.shape} does not match {self.channels} channels"
            )
        rendered = chain.process(source)

        out = np.zeros((self.length, self.channels), dtype=np.float64)
        n = min(self.length, rendered.shape[0])
        out[:n] = rendered[:n]
        if not np.all(np.isfinite(out)):
            raise FloatingPointError("Render produced non-finite samples")
        return out
