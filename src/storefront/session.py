"""
Per-shopper session context: signed-in user, cart and language.

The session owns its persistence lifecycle: `load()` at start, `save()` after every
cart mutation (best effort) and on `close()`.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import structlog

from src.storefront.cart import Cart
from src.storefront.models import User

logger = structlog.get_logger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def is_valid_session_id(session_id: str) -> bool:
    return bool(_SESSION_ID_RE.match(session_id or ""))


class SessionStore(ABC):
    @abstractmethod
    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def save(self, session_id: str, data: dict[str, Any]) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        data = self._data.get(session_id)
        return json.loads(json.dumps(data)) if data is not None else None

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        self._data[session_id] = json.loads(json.dumps(data))


class FileSessionStore(SessionStore):
    """One JSON file per session under `directory`."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValueError(f"Invalid session id {session_id!r}")
        return self.directory / f"{session_id}.json"

    def load(self, session_id: str) -> Optional[dict[str, Any]]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable session file", path=str(path), error=str(e))
            return None

    def save(self, session_id: str, data: dict[str, Any]) -> None:
        path = self._path(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)


class ShopSession:
    def __init__(
        self,
        session_id: str,
        store: SessionStore,
        *,
        language: str = "ar",
    ):
        self.session_id = session_id
        self._store = store
        self.language = language
        self.user: Optional[User] = None
        self.cart = Cart()
        self._unsubscribe = self.cart.subscribe(self._on_cart_changed)

    def load(self) -> "ShopSession":
        data = self._store.load(self.session_id) or {}

        self._unsubscribe()
        self.cart = Cart.from_dict(data.get("cart", []))
        self._unsubscribe = self.cart.subscribe(self._on_cart_changed)

        self.user = None
        raw_user = data.get("user")
        if isinstance(raw_user, dict) and raw_user.get("phone"):
            try:
                self.user = User.from_dict(raw_user)
            except (KeyError, ValueError) as e:
                logger.warning("Discarding malformed persisted user", error=str(e))

        if data.get("language") in ("ar", "en"):
            self.language = data["language"]
        return self

    def save(self) -> None:
        """Best effort: a failed write is logged, never raised."""
        try:
            self._store.save(self.session_id, self.to_dict())
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to persist session", session_id=self.session_id, error=str(e))

    def close(self) -> None:
        self.save()
        self._unsubscribe()

    def sign_in(self, user: User) -> None:
        self.user = user
        self.save()

    def logout(self) -> None:
        self.user = None
        self.save()

    def set_language(self, language: str) -> None:
        if language not in ("ar", "en"):
            raise ValueError(f"Unsupported language '{language}'")
        self.language = language
        self.save()

    def to_dict(self) -> dict[str, Any]:
        return {
            "language": self.language,
            # The admin PIN never leaves the backend.
            "user": self.user.to_dict() if self.user else None,
            "cart": self.cart.to_dict(),
        }

    def _on_cart_changed(self, _cart: Cart) -> None:
        self.save()
