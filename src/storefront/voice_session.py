"""
Voice shopping session controller.

States: idle -> connecting -> listening <-> speaking -> closed.

Every input (model audio, interruption, tool call, playback drained, close) is put
on one asyncio queue and handled by a single control loop, so the ordering rules
hold mechanically:
- an interruption flushes playback before any later frame is scheduled;
- every exit path runs the same teardown.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import structlog

from src.storefront.audio import decode_pcm_frame, encode_pcm_frame, parse_rate_from_mime
from src.storefront.cart import Cart
from src.storefront.catalog import Catalog
from src.storefront.config import Config, get_config
from src.storefront.errors import HandshakeError, MicrophonePermissionError, VoiceSessionError
from src.storefront.live_protocol import (
    Closed,
    FrameReceived,
    Interrupted,
    LiveConnection,
    LiveEvent,
    ToolCallReceived,
    TurnComplete,
    build_realtime_audio_message,
    build_tool_response,
)
from src.storefront.notifications import NotificationCenter
from src.storefront.playback import AudioOutput, PlaybackScheduler
from src.storefront.voice_tools import BasketToolExecutor

logger = structlog.get_logger(__name__)


class VoiceState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    SPEAKING = "speaking"
    CLOSED = "closed"


@dataclass(frozen=True)
class PlaybackDrained:
    pass


@dataclass(frozen=True)
class SessionFailed:
    error: str


class Microphone(Protocol):
    def open(self) -> None: ...

    def start(self, on_frame: Callable[[Any], None]) -> None: ...

    def stop(self) -> None: ...


class Connection(Protocol):
    async def open(self) -> None: ...

    async def send(self, message: str) -> None: ...

    def events(self) -> Any: ...

    async def close(self) -> None: ...


def build_instructions(catalog: Catalog, language: str, *, store_name: str = "Khodarji", currency: str = "JD") -> str:
    lang = "Arabic (Jordanian dialect)" if language == "ar" else "English"
    return "\n".join(
        [
            f"You are {store_name} AI, the voice shopping assistant of a Jordanian grocery store.",
            f"Speak {lang}. Keep answers short and friendly.",
            "When the customer asks for products, call add_to_basket with catalog ids and quantities.",
            "Only offer products from this catalog:",
            *catalog.to_prompt_lines(currency=currency),
        ]
    )


class VoiceSessionController:
    """
    Owns exactly one live session at a time: the microphone, the connection and the
    playback schedule.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        cart: Cart,
        microphone: Microphone,
        output: AudioOutput,
        connection_factory: Optional[Callable[[str, list[dict[str, Any]]], Connection]] = None,
        notifications: Optional[NotificationCenter] = None,
        on_open_cart: Optional[Callable[[], None]] = None,
        on_state_change: Optional[Callable[[VoiceState], None]] = None,
        language: str = "ar",
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.catalog = catalog
        self.cart = cart
        self.language = language
        self.microphone = microphone
        self.notifications = notifications
        self.on_open_cart = on_open_cart
        self.on_state_change = on_state_change
        self._connection_factory = connection_factory or self._default_connection

        self.playback = PlaybackScheduler(
            output,
            sample_rate=self.config.voice_output_sample_rate,
            on_drained=lambda: self._post(PlaybackDrained()),
        )
        self.tools = BasketToolExecutor(
            catalog=catalog, cart=cart, language=language, on_added=self._on_items_added
        )

        self._state = VoiceState.IDLE
        self.status: str = ""
        self.last_error: Optional[str] = None

        self._connection: Optional[Connection] = None
        self._events: asyncio.Queue[Any] = asyncio.Queue()
        self._send_queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=500)
        self._control_task: Optional[asyncio.Task] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._closed_event = asyncio.Event()

    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (VoiceState.CONNECTING, VoiceState.LISTENING, VoiceState.SPEAKING)

    def _set_state(self, state: VoiceState) -> None:
        if state == self._state:
            return
        logger.info("Voice state", from_state=self._state.value, to_state=state.value)
        self._state = state
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.warning("Voice state listener failed", error=str(e))

    def _default_connection(self, instructions: str, tools: list[dict[str, Any]]) -> Connection:
        return LiveConnection(system_instruction=instructions, tools=tools, config=self.config)

    async def start(self) -> None:
        """
        Open microphone and live session. A second start while a session is active is
        ignored. On failure the session is torn down and VoiceSessionError is raised.
        """
        if self.is_active:
            logger.warning("Voice session already active; ignoring start")
            return

        self._generation += 1
        generation = self._generation
        self._events = asyncio.Queue()
        self._send_queue = asyncio.Queue(maxsize=500)
        self._closed_event = asyncio.Event()
        self.last_error = None
        self.playback.reset()

        self._set_state(VoiceState.CONNECTING)
        self.status = "connecting"

        connection: Optional[Connection] = None
        try:
            self.microphone.open()
            instructions = build_instructions(
                self.catalog,
                self.language,
                store_name=self.config.store_name,
                currency=self.config.currency,
            )
            connection = self._connection_factory(instructions, self.tools.tool_definitions())
            self._connection = connection
            await connection.open()
        except (MicrophonePermissionError, HandshakeError) as e:
            if generation != self._generation:
                return
            await self._fail(e)
            raise
        except Exception as e:
            if generation != self._generation:
                return
            logger.exception("Voice session failed to start")
            await self._fail(e)
            raise HandshakeError(str(e)) from e

        if generation != self._generation:
            # stop() ran while the handshake was in flight and already tore down;
            # the socket may have finished opening after that.
            await connection.close()
            return

        self._control_task = asyncio.create_task(self._control_loop())
        self._recv_task = asyncio.create_task(self._receive_loop(self._connection))
        self._send_task = asyncio.create_task(self._send_loop(self._connection))

        try:
            self.microphone.start(self._on_mic_frame)
        except MicrophonePermissionError as e:
            await self._fail(e)
            raise

        self._set_state(VoiceState.LISTENING)
        self.status = "listening"
        logger.info("Voice session started", language=self.language)

    async def stop(self) -> None:
        """Close the session from any state. Safe to call repeatedly."""
        if self._state in (VoiceState.IDLE, VoiceState.CLOSED) and self._connection is None:
            return
        self._generation += 1
        await self._teardown()
        self.status = "stopped"

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def _fail(self, error: BaseException) -> None:
        self.last_error = str(error)
        self.status = f"error: {error}"
        await self._teardown()
        self._set_state(VoiceState.IDLE)
        logger.warning("Voice session failed", error=str(error), kind=type(error).__name__)

    async def _teardown(self) -> None:
        """Stop mic, flush playback, close connection, cancel loops. Every step always runs."""
        try:
            self.microphone.stop()
        except Exception as e:
            logger.warning("Microphone stop failed", error=str(e))

        self.playback.interrupt()
        self.playback.next_start_time = 0.0

        connection = self._connection
        self._connection = None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Live connection close failed", error=str(e))

        current = asyncio.current_task()
        tasks = [t for t in (self._control_task, self._recv_task, self._send_task) if t is not None]
        self._control_task = self._recv_task = self._send_task = None
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(*[t for t in tasks if t is not current], return_exceptions=True)

        if self.notifications is not None:
            self.notifications.clear()

        self._set_state(VoiceState.CLOSED)
        self._closed_event.set()

    def _post(self, event: Any) -> None:
        self._events.put_nowait(event)

    def _on_mic_frame(self, samples: Any) -> None:
        if self._state not in (VoiceState.LISTENING, VoiceState.SPEAKING):
            return
        message = build_realtime_audio_message(encode_pcm_frame(samples))
        try:
            self._send_queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Voice send queue full; dropping microphone frame")

    def _on_items_added(self, added: list[dict[str, Any]]) -> None:
        if self.notifications is not None:
            names = ", ".join(f"{item['name']} x{item['cart_quantity']:g}" for item in added)
            prefix = "تمت الإضافة إلى السلة" if self.language == "ar" else "Added to basket"
            self.notifications.show(f"{prefix}: {names}", ttl=self.config.voice_notification_seconds)
        if self.on_open_cart is not None:
            self.on_open_cart()

    async def _receive_loop(self, connection: Connection) -> None:
        try:
            async for event in connection.events():
                self._post(event)
                if isinstance(event, Closed):
                    return
            self._post(Closed(reason="eof"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Live receive loop failed", error=str(e))
            self._post(SessionFailed(error=str(e)))

    async def _send_loop(self, connection: Connection) -> None:
        try:
            while True:
                message = await self._send_queue.get()
                if message is None:
                    return
                await connection.send(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Live send failed", error=str(e))
            self._post(SessionFailed(error=str(e)))

    async def _control_loop(self) -> None:
        while True:
            event = await self._events.get()
            try:
                keep_running = await self._handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Voice event handling failed", event_type=type(event).__name__)
                await self._fail(VoiceSessionError(str(e)))
                return
            if not keep_running:
                return

    async def _handle_event(self, event: LiveEvent | PlaybackDrained | SessionFailed) -> bool:
        """Apply one event. Returns False once the session has been torn down."""
        if isinstance(event, Interrupted):
            stopped = self.playback.interrupt()
            logger.info("Barge-in", stopped_buffers=stopped)
            if self._state == VoiceState.SPEAKING:
                self._set_state(VoiceState.LISTENING)
            return True

        if isinstance(event, FrameReceived):
            samples = decode_pcm_frame(event.data)
            rate = parse_rate_from_mime(event.mime_type, self.playback.sample_rate)
            if len(samples):
                self.playback.schedule(samples, sample_rate=rate)
                if self._state == VoiceState.LISTENING:
                    self._set_state(VoiceState.SPEAKING)
            return True

        if isinstance(event, ToolCallReceived):
            for call in event.calls:
                result = await self.tools.execute(call)
                await self._send_queue.put(build_tool_response(call, result))
            return True

        if isinstance(event, PlaybackDrained):
            if self._state == VoiceState.SPEAKING and not self.playback.is_playing:
                self._set_state(VoiceState.LISTENING)
            return True

        if isinstance(event, TurnComplete):
            return True

        if isinstance(event, Closed):
            logger.info("Live session closed by remote", reason=event.reason)
            self.status = "closed"
            await self._teardown()
            return False

        if isinstance(event, SessionFailed):
            await self._fail(VoiceSessionError(event.error))
            return False

        return True
