"""
Voice filter engine for Voccal.

Previews recorded clips through voice effects on the output device and
renders the chosen effect to WAV for upload.
"""

from voccal.audio.buffer import AudioBuffer
from voccal.audio.catalog import (
    IDENTITY_FILTER_ID,
    FilterDescriptor,
    list_filters,
    resolve_filter
)
from voccal.audio.chain import ChainBuilder, FilterChain
from voccal.audio.context import AudioContext, OfflineContext
from voccal.audio.player import PlaybackController
from voccal.audio.renderer import OfflineRenderer, RenderResult
from voccal.audio.wav import WAV_MIME_TYPE, decode_audio, encode_wav

__all__ = [
    'AudioBuffer',
    'IDENTITY_FILTER_ID',
    'FilterDescriptor',
    'list_filters',
    'resolve_filter',
    'ChainBuilder',
    'FilterChain',
    'AudioContext',
    'OfflineContext',
    'PlaybackController',
    'OfflineRenderer',
    'RenderResult',
    'WAV_MIME_TYPE',
    'decode_audio',
    'encode_wav'
]
