"""
Local microphone and speaker on top of sounddevice (PortAudio).

PortAudio invokes stream callbacks on its own thread; everything that touches
session state is handed back to the asyncio loop with `call_soon_threadsafe`.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import sounddevice as sd
import structlog

from src.storefront.audio import INPUT_SAMPLE_RATE, OUTPUT_SAMPLE_RATE, resample
from src.storefront.errors import MicrophonePermissionError

logger = structlog.get_logger(__name__)


class SoundDeviceMicrophone:
    """Mono float32 capture, delivering one frame per block to `on_frame` on the loop."""

    def __init__(
        self,
        *,
        sample_rate: int = INPUT_SAMPLE_RATE,
        block_size: int = 4096,
        device: Optional[Any] = None,
    ):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device
        self._stream: Optional[sd.InputStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_frame: Optional[Callable[[np.ndarray], None]] = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        """Acquire the capture device. Raises MicrophonePermissionError when unavailable."""
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                device=self.device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise MicrophonePermissionError(f"Microphone unavailable: {e}") from e

    def start(self, on_frame: Callable[[np.ndarray], None]) -> None:
        if self._stream is None:
            raise MicrophonePermissionError("Microphone is not open")
        self._on_frame = on_frame
        try:
            self._stream.start()
        except sd.PortAudioError as e:
            raise MicrophonePermissionError(f"Microphone failed to start: {e}") from e
        logger.info("Microphone capture started", sample_rate=self.sample_rate, block_size=self.block_size)

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        self._on_frame = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Microphone close failed", error=str(e))
        logger.info("Microphone capture stopped")

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Microphone status", status=str(status))
        on_frame = self._on_frame
        loop = self._loop
        if on_frame is None or loop is None or loop.is_closed():
            return
        # indata is reused by PortAudio after the callback returns.
        frame = indata[:, 0].copy()
        loop.call_soon_threadsafe(on_frame, frame)


@dataclass
class _Scheduled:
    samples: np.ndarray
    start_frame: int
    on_ended: Callable[[], None]
    position: int = 0


class SoundDeviceSpeaker:
    """
    Clocked output that mixes scheduled buffers into a single OutputStream.

    `current_time` is the number of frames rendered so far divided by the sample
    rate, so it only advances while audio is actually being pulled by the device.
    """

    def __init__(
        self,
        *,
        sample_rate: int = OUTPUT_SAMPLE_RATE,
        device: Optional[Any] = None,
    ):
        self.sample_rate = sample_rate
        self.device = device
        self._stream: Optional[sd.OutputStream] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()
        self._frames_rendered = 0
        self._scheduled: dict[int, _Scheduled] = {}
        self._ids = itertools.count(1)

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    def open(self) -> None:
        if self._stream is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()

    def play(
        self,
        samples: Any,
        *,
        sample_rate: int,
        channels: int,
        start_time: float,
        on_ended: Callable[[], None],
    ) -> int:
        if channels != 1:
            raise ValueError(f"Speaker is mono; got {channels} channels")
        data = resample(samples, sample_rate, self.sample_rate)
        handle = next(self._ids)
        with self._lock:
            self._scheduled[handle] = _Scheduled(
                samples=data,
                start_frame=int(round(start_time * self.sample_rate)),
                on_ended=on_ended,
            )
        return handle

    def stop(self, handle: int) -> None:
        with self._lock:
            self._scheduled.pop(handle, None)

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        with self._lock:
            self._scheduled.clear()
            self._frames_rendered = 0
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            logger.warning("Speaker close failed", error=str(e))

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Speaker status", status=str(status))
        outdata.fill(0)
        finished: list[Callable[[], None]] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for handle, item in list(self._scheduled.items()):
                if item.start_frame >= block_end:
                    continue
                offset = max(0, item.start_frame - block_start)
                # Late buffers start from wherever the clock has reached.
                available = len(item.samples) - item.position
                count = min(frames - offset, available)
                if count > 0:
                    outdata[offset:offset + count, 0] += item.samples[item.position:item.position + count]
                    item.position += count
                if item.position >= len(item.samples):
                    del self._scheduled[handle]
                    finished.append(item.on_ended)
            self._frames_rendered = block_end

        np.clip(outdata, -1.0, 1.0, out=outdata)
        loop = self._loop
        if finished and loop is not None and not loop.is_closed():
            for on_ended in finished:
                loop.call_soon_threadsafe(on_ended)
