"""Transient, auto-dismissing notices (e.g. "Added to basket")."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notice:
    id: int
    message: str


class NotificationCenter:
    def __init__(
        self,
        *,
        ttl: float = 4.0,
        on_change: Optional[Callable[[list[Notice]], None]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.ttl = ttl
        self.on_change = on_change
        self._loop = loop
        self._ids = itertools.count(1)
        self._active: dict[int, Notice] = {}
        self._timers: dict[int, asyncio.TimerHandle] = {}

    @property
    def active(self) -> list[Notice]:
        return list(self._active.values())

    def show(self, message: str, ttl: Optional[float] = None) -> Notice:
        notice = Notice(id=next(self._ids), message=message)
        self._active[notice.id] = notice
        loop = self._loop or asyncio.get_running_loop()
        self._timers[notice.id] = loop.call_later(
            self.ttl if ttl is None else ttl, self.dismiss, notice.id
        )
        logger.info("Notice shown", message=message)
        self._changed()
        return notice

    def dismiss(self, notice_id: int) -> None:
        timer = self._timers.pop(notice_id, None)
        if timer is not None:
            timer.cancel()
        if self._active.pop(notice_id, None) is not None:
            self._changed()

    def clear(self) -> None:
        for notice_id in list(self._active):
            self.dismiss(notice_id)

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self.active)
        except Exception as e:
            logger.warning("Notice listener failed", error=str(e))
