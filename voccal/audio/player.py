"""
Preview playback: one filtered voice clip on the live output device.
"""

import math
import threading
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from voccal.audio.buffer import AudioBuffer
from voccal.audio.catalog import resolve_filter
from voccal.audio.chain import ChainBuilder, FilterChain
from voccal.audio.context import AudioContext, OutputHandle
from voccal.audio.stages import apply_playback_rate
from voccal.core.exceptions import DeviceError
from voccal.core.logging import get_logger

logger = get_logger(__name__)


class _Playback:
    """State of one preview: its chain, its output and its end callback."""

    def __init__(
        self,
        chain: FilterChain,
        on_ended: Optional[Callable[[], None]],
        on_done: Optional[Callable[["_Playback"], None]] = None
    ):
        self.chain = chain
        self.on_ended = on_ended
        self.on_done = on_done
        self.output: Optional[OutputHandle] = None
        self.cancelled = False
        self.finished = False
        self._lock = threading.Lock()

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True

    def finish(self, exhausted: bool) -> None:
        """Device finished callback. Runs on the audio thread."""
        with self._lock:
            if self.finished:
                return
            self.finished = True
            cancelled = self.cancelled
        self.chain.release()
        if cancelled:
            return
        if self.on_done is not None:
            self.on_done(self)
        if exhausted:
            logger.info("playback_ended", filter_id=self.chain.descriptor.id)
            if self.on_ended is not None:
                self.on_ended()


class PlaybackController:
    """
    Plays an AudioBuffer through a freshly built filter chain.

    At most one preview chain is connected at any time: every ``play``
    tears down the previous chain synchronously before building the next.
    """

    def __init__(self, context: AudioContext, builder: Optional[ChainBuilder] = None):
        """
        Initialize playback controller.

        Args:
            context: Live audio context owned by the caller
            builder: Chain builder (default recipes if omitted)
        """
        self.context = context
        self.builder = builder or ChainBuilder()
        self._current: Optional[_Playback] = None
        self._lock = threading.RLock()
        self._reaper: Optional[threading.Thread] = None

    @property
    def is_playing(self) -> bool:
        current = self._current
        return current is not None and not current.finished

    @property
    def current_filter_id(self) -> Optional[str]:
        current = self._current
        if current is None or current.finished:
            return None
        return current.chain.descriptor.id

    def _prepare_source(self, buffer: AudioBuffer, playback_rate: float) -> NDArray:
        """Apply the playback rate and convert to the context sample rate."""
        ratio = buffer.sample_rate / self.context.sample_rate
        effective_rate = playback_rate * ratio
        length = int(math.floor(buffer.frame_count / effective_rate))
        return apply_playback_rate(buffer.samples, effective_rate, length)

    def play(
        self,
        buffer: AudioBuffer,
        filter_id: str,
        on_ended: Optional[Callable[[], None]] = None
    ) -> None:
        """
        Preview a buffer with a filter.

        ``on_ended`` fires exactly once when the clip plays to its end; it
        never fires after ``stop()`` or after a newer ``play``.

        Args:
            buffer: Source audio
            filter_id: Catalog id
            on_ended: Called from the audio thread on natural end

        Raises:
            UnknownFilterError: If the id is not in the catalog
            DeviceError: If the output device fails to open or start
        """
        with self._lock:
            self.stop()

            descriptor = resolve_filter(filter_id)
            if self.context.closed:
                raise DeviceError("Audio context is closed")

            chain = self.builder.build(descriptor.id, self.context)
            playback = _Playback(chain, on_ended, on_done=self._schedule_reap)
            try:
                source = self._prepare_source(buffer, descriptor.playback_rate)
                samples = np.clip(chain.process(source), -1.0, 1.0)
                playback.output = self.context.open_output(samples, playback.finish)
                self._current = playback
                playback.output.start()
            except Exception:
                self._current = None
                self._teardown(playback)
                raise

            logger.info(
                "playback_started",
                filter_id=descriptor.id,
                playback_rate=descriptor.playback_rate,
                frames=samples.shape[0],
                channels=samples.shape[1]
            )

    def stop(self) -> None:
        """Stop the current preview and release its chain. Idempotent."""
        with self._lock:
            playback, self._current = self._current, None
            if playback is None:
                return
            self._teardown(playback)
            logger.info("playback_stopped", filter_id=playback.chain.descriptor.id)

    def _schedule_reap(self, playback: _Playback) -> None:
        # The device callback thread must not close its own stream
        self._reaper = threading.Thread(
            target=self._reap, args=(playback,), name="voccal-playback-reaper", daemon=True
        )
        self._reaper.start()

    def _reap(self, playback: _Playback) -> None:
        """Release the output of a preview that ended on its own."""
        with self._lock:
            if self._current is not playback:
                return
            self._current = None
            self._teardown(playback)

    def _teardown(self, playback: _Playback) -> None:
        playback.cancel()
        try:
            if playback.output is not None:
                self.context.release_output(playback.output)
        except Exception as e:
            logger.warning("output_release_failed", error=str(e))
        finally:
            playback.chain.release()

    def dispose(self) -> None:
        """Stop playback and close the audio context."""
        try:
            self.stop()
        finally:
            self.context.close()
