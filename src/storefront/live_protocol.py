"""
Bidirectional live-session WebSocket protocol for the hosted speech model.

Outbound messages:
- setup: model, voice, system instruction and tool declarations (sent first)
- realtimeInput: microphone audio as base64 PCM16 @16kHz
- toolResponse: result of a function call, correlated by call id

Inbound messages:
- setupComplete: handshake acknowledged
- serverContent: model audio (`modelTurn.parts[].inlineData`), `interrupted`,
  `turnComplete`
- toolCall: `functionCalls[{id, name, args}]`
- goAway: the server is about to close the session
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union

import msgspec
import structlog
import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from src.storefront.audio import INPUT_MIME_TYPE
from src.storefront.config import Config, get_config
from src.storefront.errors import HandshakeError

logger = structlog.get_logger(__name__)

LIVE_ENDPOINT = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()


@dataclass(frozen=True)
class SetupComplete:
    pass


@dataclass(frozen=True)
class FrameReceived:
    """One chunk of model speech (base64 PCM16)."""
    data: str
    mime_type: str = "audio/pcm;rate=24000"


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class FunctionCall:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallReceived:
    calls: tuple[FunctionCall, ...]


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class Closed:
    reason: str = ""


LiveEvent = Union[SetupComplete, FrameReceived, Interrupted, ToolCallReceived, TurnComplete, Closed]


def build_setup_message(
    *,
    model: str,
    voice: str,
    system_instruction: str,
    tools: Optional[list[dict[str, Any]]] = None,
) -> str:
    model_name = model if model.startswith("models/") else f"models/{model}"
    setup: dict[str, Any] = {
        "model": model_name,
        "generationConfig": {
            "responseModalities": ["AUDIO"],
            "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
        },
        "systemInstruction": {"parts": [{"text": system_instruction}]},
    }
    if tools:
        setup["tools"] = [{"functionDeclarations": tools}]
    return encoder.encode({"setup": setup}).decode("utf-8")


def build_realtime_audio_message(data_b64: str, mime_type: str = INPUT_MIME_TYPE) -> str:
    message = {"realtimeInput": {"audio": {"data": data_b64, "mimeType": mime_type}}}
    return encoder.encode(message).decode("utf-8")


def build_tool_response(call: FunctionCall, response: dict[str, Any]) -> str:
    message = {
        "toolResponse": {
            "functionResponses": [{"id": call.id, "name": call.name, "response": response}]
        }
    }
    return encoder.encode(message).decode("utf-8")


def _parse_function_calls(raw_calls: Any) -> tuple[FunctionCall, ...]:
    calls = []
    for raw in raw_calls or []:
        if not isinstance(raw, dict):
            continue
        args = raw.get("args")
        calls.append(
            FunctionCall(
                id=str(raw.get("id") or ""),
                name=str(raw.get("name") or ""),
                args=args if isinstance(args, dict) else {},
            )
        )
    return tuple(calls)


def parse_server_message(raw_message: Union[str, bytes]) -> list[LiveEvent]:
    """
    Parse one raw server message into typed events, in the order they must be handled.

    A single message can carry several signals; `interrupted` always comes first so
    that playback is flushed before any audio in the same message is scheduled.

    Raises:
        ValueError: If the message is not valid JSON
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        logger.error("Failed to parse live message", error=str(e))
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Live message must be a JSON object")

    events: list[LiveEvent] = []

    if "setupComplete" in message:
        events.append(SetupComplete())

    content = message.get("serverContent")
    if isinstance(content, dict):
        if content.get("interrupted"):
            events.append(Interrupted())
        turn = content.get("modelTurn") or {}
        for part in turn.get("parts") or []:
            inline = part.get("inlineData") if isinstance(part, dict) else None
            if isinstance(inline, dict) and inline.get("data"):
                events.append(
                    FrameReceived(
                        data=inline["data"],
                        mime_type=inline.get("mimeType") or "audio/pcm;rate=24000",
                    )
                )
        if content.get("turnComplete"):
            events.append(TurnComplete())

    tool_call = message.get("toolCall")
    if isinstance(tool_call, dict):
        calls = _parse_function_calls(tool_call.get("functionCalls"))
        if calls:
            events.append(ToolCallReceived(calls=calls))

    if "goAway" in message:
        events.append(Closed(reason="go_away"))

    return events


class LiveConnection:
    """
    One live session over a WebSocket.

    `open()` connects and completes the setup handshake; iterate the connection for
    parsed events. The socket is owned exclusively by this object.
    """

    def __init__(
        self,
        *,
        system_instruction: str,
        tools: Optional[list[dict[str, Any]]] = None,
        config: Optional[Config] = None,
        handshake_timeout: float = 10.0,
    ):
        self.config = config or get_config()
        self.system_instruction = system_instruction
        self.tools = tools or []
        self.handshake_timeout = handshake_timeout
        self._ws: Optional[Any] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        if self._ws:
            return

        api_key = (self.config.gemini_api_key or "").strip()
        model = (self.config.gemini_live_model or "").strip()
        if not api_key or not model:
            raise HandshakeError("Voice requires GEMINI_API_KEY and GEMINI_LIVE_MODEL")

        url = f"{LIVE_ENDPOINT}?key={api_key}"
        try:
            self._ws = await websockets.connect(url, open_timeout=self.handshake_timeout, max_size=None)
            await self._ws.send(
                build_setup_message(
                    model=model,
                    voice=self.config.gemini_live_voice,
                    system_instruction=self.system_instruction,
                    tools=self.tools,
                )
            )
            await asyncio.wait_for(self._await_setup_complete(), timeout=self.handshake_timeout)
        except HandshakeError:
            await self.close()
            raise
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            await self.close()
            raise HandshakeError(f"Live session handshake failed: {e}") from e

        logger.info("Live session connected", model=model, voice=self.config.gemini_live_voice)

    async def _await_setup_complete(self) -> None:
        async for raw in self._ws:
            try:
                events = parse_server_message(raw)
            except ValueError:
                continue
            if any(isinstance(event, SetupComplete) for event in events):
                return
            if any(isinstance(event, Closed) for event in events):
                break
        raise HandshakeError("Live session closed before setup completed")

    async def send(self, message: str) -> None:
        if not self._ws:
            raise ConnectionError("Live session is not open")
        await self._ws.send(message)

    async def events(self) -> AsyncIterator[LiveEvent]:
        """Yield parsed events until the socket closes; always ends with `Closed`."""
        ws = self._ws
        if not ws:
            return
        reason = "closed"
        try:
            async for raw in ws:
                try:
                    parsed = parse_server_message(raw)
                except ValueError:
                    continue
                for event in parsed:
                    yield event
        except ConnectionClosedError as e:
            reason = f"connection_error: {e}"
        yield Closed(reason=reason)

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Live socket close failed", error=str(e))
