#!/usr/bin/env python3
"""
Local voice shopping session.

Talks to the live speech model through the default microphone and speaker; items
the model adds are saved into the same session cart the API uses.

Usage:
  python scripts/voice_shop.py --session demo --language ar
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from server.app import configure_logging
from src.storefront.audio_devices import SoundDeviceMicrophone, SoundDeviceSpeaker
from src.storefront.catalog import Catalog
from src.storefront.config import get_config
from src.storefront.errors import VoiceSessionError
from src.storefront.notifications import NotificationCenter
from src.storefront.persistence import create_store
from src.storefront.pricing import PricingRules, format_amount
from src.storefront.session import FileSessionStore, ShopSession
from src.storefront.voice_session import VoiceSessionController

logger = structlog.get_logger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Shop by voice from the terminal.")
    p.add_argument("--session", default="voice", help="Session id whose cart receives the items")
    p.add_argument("--language", choices=("ar", "en"), default=None)
    p.add_argument("--input-device", default=None, help="sounddevice input device name or index")
    p.add_argument("--output-device", default=None, help="sounddevice output device name or index")
    return p.parse_args(argv)


def _device(value: str | None):
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def _print_cart(session: ShopSession, currency: str, rules: PricingRules) -> None:
    print("\n--- Basket ---")
    for line in session.cart:
        print(f"  {line.product.name.get(session.language)}  x{line.quantity.normalize():f} {line.product.unit}")
    pricing = session.cart.pricing(rules)
    print(f"  Total: {format_amount(pricing.total)} {currency}\n")


def _print_notices(notices) -> None:
    if notices:
        print(f"  * {notices[-1].message}")


async def run(args: argparse.Namespace) -> int:
    config = get_config()
    configure_logging(config.log_level)

    store = create_store(config)
    try:
        catalog = Catalog(await store.list_products())
    finally:
        await store.close()

    session = ShopSession(
        args.session, FileSessionStore(config.session_dir), language=config.default_language
    ).load()
    if args.language:
        session.set_language(args.language)

    rules = PricingRules.from_config(config)
    notifications = NotificationCenter(
        ttl=config.voice_notification_seconds,
        on_change=_print_notices,
    )
    speaker = SoundDeviceSpeaker(sample_rate=config.voice_output_sample_rate, device=_device(args.output_device))
    controller = VoiceSessionController(
        catalog=catalog,
        cart=session.cart,
        microphone=SoundDeviceMicrophone(
            sample_rate=config.voice_input_sample_rate,
            block_size=config.voice_input_block_size,
            device=_device(args.input_device),
        ),
        output=speaker,
        notifications=notifications,
        on_open_cart=lambda: _print_cart(session, config.currency, rules),
        on_state_change=lambda state: print(f"[{state.value}]"),
        language=session.language,
        config=config,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(controller.stop()))
        except NotImplementedError:
            pass

    speaker.open()
    try:
        await controller.start()
        print("Speak now. Press Ctrl+C to stop.")
        await controller.wait_closed()
    except VoiceSessionError as e:
        logger.error("Voice session failed", error=str(e))
        print(f"Voice session failed: {e}")
        return 1
    finally:
        await controller.stop()
        speaker.close()
        session.close()

    _print_cart(session, config.currency, rules)
    return 0


def main() -> None:
    sys.exit(asyncio.run(run(_parse_args())))


if __name__ == "__main__":
    main()
