"""
Gapless playback scheduling for model speech.

Each inbound frame is scheduled at `max(next_start_time, output.current_time)` and
`next_start_time` then advances by exactly the frame's duration, so consecutive
frames play back to back regardless of network jitter. Every scheduled buffer is
tracked until it ends or is interrupted.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

import structlog

from src.storefront.audio import OUTPUT_SAMPLE_RATE, frame_duration_seconds

logger = structlog.get_logger(__name__)

_MISSING = object()


class AudioOutput(Protocol):
    """A clocked sink that can play buffers at a scheduled time."""

    @property
    def current_time(self) -> float: ...

    def play(
        self,
        samples: Any,
        *,
        sample_rate: int,
        channels: int,
        start_time: float,
        on_ended: Callable[[], None],
    ) -> Any: ...

    def stop(self, handle: Any) -> None: ...


class PlaybackScheduler:
    def __init__(
        self,
        output: AudioOutput,
        *,
        sample_rate: int = OUTPUT_SAMPLE_RATE,
        channels: int = 1,
        on_drained: Optional[Callable[[], None]] = None,
    ):
        self.output = output
        self.sample_rate = sample_rate
        self.channels = channels
        self.on_drained = on_drained
        self.next_start_time: float = 0.0
        self._live: dict[int, Any] = {}
        self._seq = 0

    @property
    def is_playing(self) -> bool:
        return bool(self._live)

    @property
    def live_count(self) -> int:
        return len(self._live)

    def schedule(self, samples: Any, *, sample_rate: Optional[int] = None) -> float:
        """
        Queue one frame for playback and return its start time.

        `sample_rate` is the frame's declared rate; the frame's duration, and so the
        next start time, is measured at that rate.
        """
        rate = sample_rate or self.sample_rate
        duration = frame_duration_seconds(samples, rate, self.channels)
        if duration <= 0:
            return self.next_start_time

        start = max(self.next_start_time, self.output.current_time)
        self._seq += 1
        buffer_id = self._seq

        # Register before play() so an immediate on_ended still finds the buffer.
        self._live[buffer_id] = None
        try:
            handle = self.output.play(
                samples,
                sample_rate=rate,
                channels=self.channels,
                start_time=start,
                on_ended=lambda: self._handle_ended(buffer_id),
            )
        except Exception:
            self._live.pop(buffer_id, None)
            raise
        if buffer_id in self._live:
            self._live[buffer_id] = handle
        self.next_start_time = start + duration
        return start

    def interrupt(self) -> int:
        """Stop every live buffer and rewind the schedule. Returns how many were stopped."""
        live = list(self._live.values())
        self._live.clear()
        for handle in live:
            if handle is None:
                continue
            try:
                self.output.stop(handle)
            except Exception as e:
                logger.warning("Failed to stop playback buffer", error=str(e))
        self.next_start_time = 0.0
        if live:
            logger.debug("Playback interrupted", stopped=len(live))
        return len(live)

    def reset(self) -> None:
        self.interrupt()
        self._seq = 0

    def _handle_ended(self, buffer_id: int) -> None:
        if self._live.pop(buffer_id, _MISSING) is _MISSING:
            # Already stopped by interrupt().
            return
        if not self._live and self.on_drained is not None:
            self.on_drained()
