"""
Audio decoding and 16-bit PCM WAV encoding.
"""

import io
import os
import tempfile
from typing import Tuple
import wave

import numpy as np
import soundfile as sf
from numpy.typing import NDArray

from voccal.audio.buffer import AudioBuffer
from voccal.core.exceptions import DecodeError
from voccal.core.logging import get_logger

logger = get_logger(__name__)

WAV_MIME_TYPE = "audio/wav"
WAV_HEADER_SIZE = 44
PCM16_POSITIVE_SCALE = 32767  # 0x7FFF
PCM16_NEGATIVE_SCALE = 32768  # 0x8000


def quantize_pcm16(samples: NDArray) -> NDArray[np.int16]:
    """
    Quantize float samples to signed 16-bit integers.

    Samples are clamped to [-1, 1], then negative values are scaled by
    32768 and positive values by 32767 and truncated toward zero, so
    ``1.0 -> 32767`` and ``-1.0 -> -32768``.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * PCM16_NEGATIVE_SCALE, clipped * PCM16_POSITIVE_SCALE)
    return np.trunc(scaled).astype(np.int16)


def encode_wav(samples: NDArray, sample_rate: int) -> bytes:
    """
    Encode samples as a PCM WAV file.

    Args:
        samples: Float audio of shape (frames, channels)
        sample_rate: Sample rate in Hz

    Returns:
        RIFF/WAVE bytes: 16-bit little-endian interleaved PCM
    """
    data = np.asarray(samples)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    pcm = quantize_pcm16(data)

    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(pcm.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm.astype("<i2").tobytes())
    return out.getvalue()


def _decode_container(data: bytes) -> Tuple[NDArray, int]:
    """
    Decode formats libsndfile cannot read (WebM/Opus, MP4/AAC) with librosa.

    librosa hands these to audioread, which needs a real file and an
    ffmpeg or GStreamer backend.
    """
    import librosa  # deferred; only recorder containers need it

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "clip")
        with open(path, "wb") as f:
            f.write(data)
        try:
            y, sample_rate = librosa.load(path, sr=None, mono=False)
        except Exception as e:
            raise DecodeError(f"Unsupported audio format: {e}") from e

    y = np.asarray(y, dtype=np.float32)
    samples = y.reshape(-1, 1) if y.ndim == 1 else y.T
    return samples, int(sample_rate)


def decode_audio(data: bytes) -> AudioBuffer:
    """
    Decode an encoded audio file into an AudioBuffer.

    WAV, FLAC and Ogg are read with soundfile. Anything else, such as the
    WebM or MP4 clips browsers record, goes through librosa.

    Raises:
        DecodeError: If the bytes are empty or not a supported format
    """
    if not data:
        raise DecodeError("No audio data")
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (sf.SoundFileError, RuntimeError, TypeError) as e:
        logger.debug("soundfile_decode_failed", error=str(e), bytes=len(data))
        samples, sample_rate = _decode_container(data)
    if samples.shape[0] == 0:
        raise DecodeError("Audio file contains no frames")
    return AudioBuffer(samples, int(sample_rate))
