"""
Offline rendering: apply a filter to a whole clip and encode it for upload.
"""

import asyncio
from dataclasses import dataclass
from functools import partial
import math
import threading
import time
from typing import Optional, Union

from voccal.audio.buffer import AudioBuffer
from voccal.audio.catalog import FilterDescriptor, resolve_filter
from voccal.audio.chain import ChainBuilder
from voccal.audio.context import OfflineContext
from voccal.audio.stages import apply_playback_rate
from voccal.audio.wav import WAV_MIME_TYPE, decode_audio, encode_wav
from voccal.core.exceptions import RenderBusyError, RenderError, VoccalError
from voccal.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RenderResult:
    """Encoded output of one render, ready for the storage collaborator."""
    data: bytes
    mime_type: str
    filter_id: str
    channels: Optional[int] = None
    sample_rate: Optional[int] = None
    frame_count: Optional[int] = None
    bypassed: bool = False

    @property
    def byte_count(self) -> int:
        return len(self.data)

    @property
    def duration(self) -> Optional[float]:
        """Duration in seconds, unknown for bypassed bytes."""
        if self.frame_count is None or not self.sample_rate:
            return None
        return self.frame_count / self.sample_rate


class OfflineRenderer:
    """
    Renders filtered clips without realtime constraints.

    A renderer runs one render at a time. A second call while one is in
    flight is rejected with RenderBusyError rather than queued.
    """

    def __init__(self, builder: Optional[ChainBuilder] = None, seed: Optional[int] = None):
        """
        Initialize offline renderer.

        Args:
            builder: Chain builder (default recipes if omitted)
            seed: Seed for synthetic impulse responses
        """
        self.builder = builder or ChainBuilder()
        self.seed = seed
        self._busy = threading.Lock()

    def render(
        self,
        source: Union[bytes, AudioBuffer],
        filter_id: str,
        mime_type: Optional[str] = None
    ) -> RenderResult:
        """
        Apply a filter to a clip and encode the result.

        The identity filter returns the input bytes unchanged. All other
        filters decode, time-stretch to ``floor(frames / playback_rate)``
        frames, run the chain and encode 16-bit PCM WAV.

        Args:
            source: Encoded audio bytes or a decoded buffer
            filter_id: Catalog id
            mime_type: Type of the source bytes, reported on bypass

        Returns:
            RenderResult

        Raises:
            UnknownFilterError: If the id is not in the catalog
            DecodeError: If the source bytes cannot be decoded
            RenderError: If processing fails after it started
            RenderBusyError: If another render is in flight
        """
        descriptor = resolve_filter(filter_id)

        if not self._busy.acquire(blocking=False):
            raise RenderBusyError()
        try:
            if descriptor.is_identity and isinstance(source, (bytes, bytearray)):
                logger.info("render_bypassed", filter_id=descriptor.id, bytes=len(source))
                return RenderResult(
                    data=bytes(source),
                    mime_type=mime_type or "application/octet-stream",
                    filter_id=descriptor.id,
                    bypassed=True,
                )

            buffer = source if isinstance(source, AudioBuffer) else decode_audio(bytes(source))
            return self._render_buffer(buffer, descriptor)
        finally:
            self._busy.release()

    def _render_buffer(self, buffer: AudioBuffer, descriptor: FilterDescriptor) -> RenderResult:
        start = time.perf_counter()
        rate = descriptor.playback_rate
        length = int(math.floor(buffer.frame_count / rate))

        if descriptor.is_identity:
            # Buffers have no original bytes to hand back; encode unchanged
            data = encode_wav(buffer.samples, buffer.sample_rate)
            return RenderResult(
                data=data,
                mime_type=WAV_MIME_TYPE,
                filter_id=descriptor.id,
                channels=buffer.channels,
                sample_rate=buffer.sample_rate,
                frame_count=buffer.frame_count,
            )

        context = OfflineContext(buffer.channels, length, buffer.sample_rate, seed=self.seed)
        chain = None
        try:
            chain = self.builder.build(descriptor.id, context)
            source = apply_playback_rate(buffer.samples, rate, length)
            rendered = context.render(chain, source)
            data = encode_wav(rendered, buffer.sample_rate)
        except VoccalError:
            raise
        except Exception as e:
            logger.error(
                "render_failed",
                filter_id=descriptor.id,
                error=str(e),
                error_type=type(e).__name__
            )
            raise RenderError(f"Render with {descriptor.id!r} failed: {e}") from e
        finally:
            if chain is not None:
                chain.release()

        logger.info(
            "render_completed",
            filter_id=descriptor.id,
            input_frames=buffer.frame_count,
            output_frames=length,
            channels=buffer.channels,
            sample_rate=buffer.sample_rate,
            bytes=len(data),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1)
        )
        return RenderResult(
            data=data,
            mime_type=WAV_MIME_TYPE,
            filter_id=descriptor.id,
            channels=buffer.channels,
            sample_rate=buffer.sample_rate,
            frame_count=length,
        )

    async def render_async(
        self,
        source: Union[bytes, AudioBuffer],
        filter_id: str,
        mime_type: Optional[str] = None
    ) -> RenderResult:
        """Run ``render`` in the default executor. Not cancellable once started."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(self.render, source, filter_id, mime_type)
        )
