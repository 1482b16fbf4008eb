"""
Audio utilities for the voice signup session.

The browser captures microphone audio and streams it to the server as
PCM16 mono at 24kHz, which is exactly what the OpenAI Realtime session expects
for `input_audio_format: pcm16`. Model speech comes back in the same format, so
no resampling happens server side.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

REALTIME_SAMPLE_RATE = 24000


def pcm16_level(pcm_bytes: bytes) -> float:
    """
    Compute the RMS input level of PCM16 audio.

    Args:
        pcm_bytes: Linear PCM 16-bit bytes

    Returns:
        Level between 0.0 (silence) and 1.0 (full scale)
    """
    if len(pcm_bytes) < 2:
        return 0.0

    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    samples = np.frombuffer(pcm_bytes[:usable], dtype=np.int16).astype(np.float32)
    rms = float(np.sqrt(np.mean(np.square(samples / 32768.0))))
    return min(1.0, max(0.0, rms))


def get_audio_duration_ms(pcm_bytes: bytes, sample_rate: int = REALTIME_SAMPLE_RATE) -> float:
    """
    Calculate the duration of PCM16 mono audio in milliseconds.

    Args:
        pcm_bytes: Linear PCM 16-bit bytes
        sample_rate: Sample rate in Hz

    Returns:
        Duration in milliseconds
    """
    if not pcm_bytes:
        return 0.0
    return (len(pcm_bytes) // 2) / sample_rate * 1000


class AudioSource(ABC):
    """
    Microphone abstraction owned by the transport.

    The transport acquires the source on connect, iterates `frames()` while the
    session is open and releases it on teardown.
    """

    @abstractmethod
    async def acquire(self) -> None:
        ...

    @abstractmethod
    async def release(self) -> None:
        ...

    @abstractmethod
    def frames(self) -> AsyncIterator[bytes]:
        ...

    def push(self, pcm: bytes) -> None:
        """Accept a frame captured elsewhere. Device-backed sources ignore it."""
        return None


class ClientAudioSource(AudioSource):
    """
    Audio source fed by frames the browser sends over the client WebSocket.
    """

    def __init__(self, max_frames: int = 500):
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=max_frames)
        self._acquired = False
        self._dropped = 0

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> None:
        # A fresh queue per acquisition so a stale end-of-stream marker never leaks into a retry.
        self._queue = asyncio.Queue(maxsize=self._queue.maxsize)
        self._acquired = True

    async def release(self) -> None:
        if not self._acquired:
            return
        self._acquired = False
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    def push(self, pcm: bytes) -> None:
        """Queue one frame from the client. Dropped when not acquired or saturated."""
        if not self._acquired or not pcm:
            return
        try:
            self._queue.put_nowait(pcm)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped % 100 == 1:
                logger.warning("Client audio queue full; dropping frames", dropped=self._dropped)

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
