#!/usr/bin/env python3
"""
Storefront smoke test.

Validates configuration and connectivity without placing an order:
imports, environment, the backend REST API and the /health endpoint.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

REQUIRED_ENV = ("SUPABASE_URL", "SUPABASE_ANON_KEY")
OPTIONAL_ENV = (
    "PUBLIC_HOST",
    "PORT",
    "LOG_LEVEL",
    "DEFAULT_LANGUAGE",
    "GEMINI_API_KEY",
    "GEMINI_CHAT_MODEL",
    "GEMINI_LIVE_MODEL",
    "WHATSAPP_NUMBER",
    "ADMIN_PHONE",
)
SECRET_ENV = {"SUPABASE_ANON_KEY", "GEMINI_API_KEY"}

MODULES = (
    "fastapi",
    "uvicorn",
    "pydantic",
    "structlog",
    "dotenv",
    "httpx",
    "websockets",
    "openai",
    "msgspec",
    "numpy",
)


def section(title: str) -> None:
    print(f"\n== {title} ==")


def report(tag: str, text: str) -> None:
    print(f"  [{tag}] {text}")


def _display(var: str, value: str) -> str:
    if var not in SECRET_ENV:
        return value
    return value[:4] + "..." + value[-4:] if len(value) > 8 else "****"


def check_imports() -> bool:
    section("Imports")
    ok = True
    for module in MODULES:
        try:
            __import__(module)
        except ImportError as e:
            report("ERR", f"{module}: {e}")
            ok = False
        else:
            report("OK", module)

    # Only the local voice session needs an audio device backend.
    try:
        __import__("sounddevice")
        report("OK", "sounddevice")
    except (ImportError, OSError):
        report("WARN", "sounddevice unavailable, voice_shop.py will not run")
    return ok


def check_environment() -> bool:
    section("Environment")
    from dotenv import load_dotenv

    load_dotenv()

    missing = [var for var in REQUIRED_ENV if not os.getenv(var)]
    for var in REQUIRED_ENV + OPTIONAL_ENV:
        value = os.getenv(var)
        if value:
            report("OK", f"{var}={_display(var, value)}")
        elif var in REQUIRED_ENV:
            report("ERR", f"{var} is required")
        else:
            report("WARN", f"{var} not set, default applies")
    return not missing


async def check_backend() -> bool:
    section("Backend")
    from src.storefront.config import get_config
    from src.storefront.persistence import SupabaseStore

    config = get_config()
    if not config.supabase_url or not config.supabase_anon_key:
        report("ERR", "backend credentials missing")
        return False

    store = SupabaseStore(config=config)
    try:
        if not await store.test_connection():
            report("ERR", f"{config.supabase_url} did not answer")
            return False
        products = await store.list_products()
    finally:
        await store.close()

    report("OK", f"{len(products)} products in catalog")
    return True


def check_health() -> bool:
    section("HTTP API")
    from fastapi.testclient import TestClient
    from server.app import app

    try:
        with TestClient(app) as client:
            response = client.get("/health")
    except Exception as e:
        report("ERR", f"app failed to start: {e}")
        return False

    if response.status_code != 200:
        report("ERR", f"/health returned {response.status_code}: {response.text[:200]}")
        return False
    report("OK", f"/health {response.json()}")
    return True


async def main() -> int:
    print("Khodarji storefront smoke test")

    results = {
        "imports": check_imports(),
        "environment": check_environment(),
    }
    results["backend"] = await check_backend()
    results["http"] = check_health()

    section("Summary")
    for name, passed in results.items():
        report("OK" if passed else "ERR", name)

    if all(results.values()):
        print("\nAll checks passed. Start the API with 'python -m server.app'.")
        return 0
    print("\nSome checks failed.")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
