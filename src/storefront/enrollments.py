"""Promotions list sign-ups."""

from __future__ import annotations

from typing import Optional

import structlog

from src.storefront.checkout import validate_phone
from src.storefront.models import Enrollment
from src.storefront.orders import require_admin
from src.storefront.persistence import Store
from src.storefront.session import ShopSession

logger = structlog.get_logger(__name__)


async def enroll(store: Store, phone: str, name: Optional[str] = None) -> None:
    phone = validate_phone(phone)
    name = (name or "").strip() or None
    await store.add_enrollment(phone, name)
    logger.info("Enrollment added", phone_suffix=phone[-3:])


async def list_enrollments(session: ShopSession, store: Store) -> list[Enrollment]:
    require_admin(session.user)
    return await store.list_enrollments()
