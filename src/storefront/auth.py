"""
Phone-number sign-in with an admin PIN, plus OAuth social login through the
hosted backend's auth API.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from src.storefront.checkout import is_valid_phone, validate_phone
from src.storefront.config import Config, get_config
from src.storefront.errors import (
    IncorrectAdminPinError,
    InvalidPhoneError,
    InvalidSessionError,
    PersistenceError,
    PinRequiredError,
)
from src.storefront.models import Role, User
from src.storefront.persistence import Store

logger = structlog.get_logger(__name__)

OAUTH_PROVIDERS = ("google", "apple", "facebook")


async def sign_in(
    store: Store,
    phone: str,
    city: Optional[str] = None,
    pin: Optional[str] = None,
    *,
    config: Optional[Config] = None,
    allow_admin: bool = True,
) -> User:
    """
    Identify a user by phone.

    Existing admins must present their PIN. Unknown phones are registered; the very
    first user and the configured admin phone become admins with the default PIN.
    """
    config = config or get_config()
    phone = validate_phone(phone)

    existing = await store.get_user_by_phone(phone)
    if existing is not None:
        if existing.is_admin:
            if not pin:
                raise PinRequiredError("Admin accounts require a PIN")
            if pin != existing.pin:
                logger.warning("Admin PIN rejected", phone_suffix=phone[-3:])
                raise IncorrectAdminPinError("Incorrect admin PIN")
        if city and city != existing.city:
            await store.update_user_city(phone, city)
            existing = User(id=existing.id, phone=existing.phone, city=city, role=existing.role, pin=existing.pin)
        logger.info("User signed in", role=existing.role.value, phone_suffix=phone[-3:])
        return existing

    role = Role.CUSTOMER
    if allow_admin and (phone == config.admin_phone or not await store.has_users()):
        role = Role.ADMIN
    user = await store.insert_user(
        User(
            phone=phone,
            city=city,
            role=role,
            pin=config.default_admin_pin if role == Role.ADMIN else None,
        )
    )
    logger.info("User registered", role=role.value, phone_suffix=phone[-3:])
    return user


def oauth_authorize_url(provider: str, redirect_to: Optional[str] = None, *, config: Optional[Config] = None) -> str:
    config = config or get_config()
    provider = (provider or "").strip().lower()
    if provider not in OAUTH_PROVIDERS:
        raise ValueError(f"Unsupported OAuth provider '{provider}'")
    params = {"provider": provider}
    redirect = redirect_to or config.oauth_redirect_url
    if redirect:
        params["redirect_to"] = redirect
    return f"{config.supabase_url}/auth/v1/authorize?{urlencode(params)}"


def local_phone(raw: Any) -> Optional[str]:
    """Map an identity phone (`+962 7x...`, `9627x...`, `07x...`) to the local 9-digit form."""
    digits = "".join(ch for ch in str(raw or "") if ch.isdigit())
    if digits.startswith("962"):
        digits = digits[3:]
    if digits.startswith("0"):
        digits = digits[1:]
    return digits if is_valid_phone(digits) else None


async def fetch_oauth_identity(
    access_token: str,
    *,
    config: Optional[Config] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, Any]:
    config = config or get_config()
    headers = {"apikey": config.supabase_anon_key, "Authorization": f"Bearer {access_token}"}
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10.0)
    try:
        resp = await client.get(f"{config.supabase_url}/auth/v1/user", headers=headers)
    except httpx.HTTPError as e:
        raise PersistenceError(f"OAuth identity lookup failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if resp.status_code in (401, 403):
        raise InvalidSessionError("OAuth session is not valid")
    if resp.status_code >= 400:
        raise PersistenceError(f"OAuth identity lookup returned {resp.status_code}")
    return resp.json()


async def sign_in_with_oauth(
    store: Store,
    access_token: str,
    city: Optional[str] = None,
    *,
    config: Optional[Config] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> User:
    """
    Resolve a social-login session to a storefront user.

    Orders are keyed by phone, so the identity must carry one (either the account
    phone or `user_metadata.phone`). Admin accounts cannot sign in this way.
    """
    identity = await fetch_oauth_identity(access_token, config=config, client=client)
    metadata = identity.get("user_metadata") or {}
    phone = local_phone(identity.get("phone")) or local_phone(metadata.get("phone"))
    if not phone:
        raise InvalidPhoneError("Social account has no Jordanian mobile number attached")

    existing = await store.get_user_by_phone(phone)
    if existing is not None and existing.is_admin:
        raise PinRequiredError("Admin accounts must sign in with phone and PIN")
    return await sign_in(store, phone, city, config=config, allow_admin=False)
