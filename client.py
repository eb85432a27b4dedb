"""
Terminal client shell for the chat hub.

Binds user actions (join, send, typing, leave) to hub invocations and hands the
hub's events to registered handlers. All state here is local and ephemeral:
whether we have joined, the "stopped typing" debounce timer, and the preferred
display name cached on disk.
"""

import asyncio
import inspect
import itertools
import json
import sys
from collections import defaultdict
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import websockets
from pydantic import ValidationError

from constants import CHAT_NAME_FILE, HUB_URL, TYPING_QUIET_PERIOD
from hub_names import (
    COMPLETION_FRAME,
    EVENT_FRAME,
    GET_USERS,
    INVOCATION_FRAME,
    JOIN_CHAT_ROOM,
    LEAVE_CHAT_ROOM,
    RECEIVE_ERROR_EVENT,
    RECEIVE_MESSAGE_EVENT,
    SEND_MESSAGE,
    SET_TYPING,
    USER_JOINED_EVENT,
    USER_LEFT_EVENT,
    USER_LIST_EVENT,
    USER_TYPING_EVENT,
)
from logging_config import get_logger, setup_logging
from schemas.hub import ChatMessage, TypingState

logger = get_logger(__name__)


class HubInvocationError(Exception):
    """The hub rejected an invocation at the protocol level."""


def load_preferred_name(path: str = CHAT_NAME_FILE) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return ""
    except OSError as e:
        logger.debug(f"Could not read cached name from {path}: {e}")
        return ""


def save_preferred_name(name: str, path: str = CHAT_NAME_FILE):
    try:
        Path(path).write_text(name.strip(), encoding="utf-8")
    except OSError as e:
        logger.debug(f"Could not cache name to {path}: {e}")


class ChatClient:
    def __init__(self, connection, quiet_period: float = TYPING_QUIET_PERIOD, name_file: str = CHAT_NAME_FILE):
        self.connection = connection
        self.quiet_period = quiet_period
        self.name_file = name_file
        self.name = load_preferred_name(name_file)
        self.joined = False

        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._pending: Dict[str, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._typing_task: Optional[asyncio.Task] = None
        self._closed = False

    def on(self, event: str, handler: Callable):
        """Register a handler for a hub event. Handlers may be plain functions or coroutines."""
        self._handlers[event].append(handler)

    # Hub calls

    async def invoke(self, target: str, *arguments: Any) -> Any:
        """Call a hub method and wait for its completion."""
        if self._closed:
            raise ConnectionError("Connection to hub closed")
        invocation_id = str(next(self._ids))
        future = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = future
        try:
            await self._send({
                "type": INVOCATION_FRAME,
                "invocationId": invocation_id,
                "target": target,
                "arguments": list(arguments),
            })
            return await future
        finally:
            self._pending.pop(invocation_id, None)

    async def send_invocation(self, target: str, *arguments: Any):
        """Fire-and-forget call: no invocation id, so the hub sends no completion."""
        await self._send({"type": INVOCATION_FRAME, "target": target, "arguments": list(arguments)})

    async def join(self, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            return False
        await self.invoke(JOIN_CHAT_ROOM, name)
        self.joined = True
        self.name = name
        save_preferred_name(name, self.name_file)
        # The roster broadcast may have raced the join; fetch it directly too
        users = await self.get_users()
        await self._dispatch(USER_LIST_EVENT, [users])
        return True

    async def leave(self):
        try:
            await self.invoke(LEAVE_CHAT_ROOM)
        finally:
            self.joined = False
            self._cancel_typing_timer()

    async def send(self, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        await self.invoke(SEND_MESSAGE, text)
        self._cancel_typing_timer()
        await self._signal_typing(False)
        return True

    async def get_users(self) -> List[str]:
        return await self.invoke(GET_USERS)

    async def notify_typing(self):
        """Report typing now and "stopped typing" once the quiet period passes without another call."""
        if not self.joined:
            return
        await self._signal_typing(True)
        self._cancel_typing_timer()
        self._typing_task = asyncio.create_task(self._stop_typing_later())

    def is_mine(self, message: ChatMessage) -> bool:
        return bool(self.name) and message.display_name == self.name

    # Receiving

    async def listen(self):
        """Read frames until the connection closes, then fail whatever is still pending."""
        try:
            async for raw in self.connection:
                try:
                    await self.handle_frame(raw)
                except (ValidationError, AttributeError, TypeError) as e:
                    logger.warning(f"Ignoring malformed frame from hub: {e}")
        except websockets.ConnectionClosed as e:
            logger.info(f"Connection to hub closed: {e}")
        finally:
            self._closed = True
            self._cancel_typing_timer()
            for future in list(self._pending.values()):
                if not future.done():
                    future.set_exception(ConnectionError("Connection to hub closed"))

    async def handle_frame(self, raw):
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring non-JSON frame from hub: {raw!r}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Ignoring frame that is not an object: {raw!r}")
            return

        frame_type = frame.get("type")
        if frame_type == COMPLETION_FRAME:
            future = self._pending.get(str(frame.get("invocationId")))
            if future is None or future.done():
                return
            if frame.get("error"):
                future.set_exception(HubInvocationError(frame["error"]))
            else:
                future.set_result(frame.get("result"))
        elif frame_type == EVENT_FRAME:
            await self._handle_event(frame.get("target"), frame.get("arguments") or [])
        else:
            logger.debug(f"Ignoring frame of type {frame_type!r}")

    async def _handle_event(self, target: str, arguments: List[Any]):
        if target == RECEIVE_MESSAGE_EVENT and arguments:
            arguments = [ChatMessage.model_validate(arguments[0])]
        elif target == USER_TYPING_EVENT and arguments:
            typing = TypingState.model_validate(arguments[0])
            if typing.display_name == self.name:
                return
            arguments = [typing]
        await self._dispatch(target, arguments)

    async def _dispatch(self, target: str, arguments: List[Any]):
        for handler in self._handlers.get(target, []):
            try:
                result = handler(*arguments)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Handler for '{target}' failed: {e}", exc_info=True)

    # Internals

    async def _send(self, frame: dict):
        await self.connection.send(json.dumps(frame))

    async def _signal_typing(self, is_typing: bool):
        try:
            await self.send_invocation(SET_TYPING, is_typing)
        except Exception as e:
            logger.debug(f"Typing signal dropped: {e}")

    async def _stop_typing_later(self):
        await asyncio.sleep(self.quiet_period)
        await self._signal_typing(False)

    def _cancel_typing_timer(self):
        if self._typing_task is not None and not self._typing_task.done():
            self._typing_task.cancel()
        self._typing_task = None


@asynccontextmanager
async def open_client(url: str = HUB_URL, **kwargs):
    """Connect to the hub and keep a background listener running for the life of the block."""
    async with websockets.connect(url) as connection:
        client = ChatClient(connection, **kwargs)
        listener = asyncio.create_task(client.listen())
        try:
            yield client
        finally:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass


def bind_terminal_handlers(client: ChatClient):
    def on_message(message: ChatMessage):
        marker = "*" if client.is_mine(message) else " "
        print(f"{marker} [{message.timestamp.astimezone():%H:%M:%S}] {message.display_name}: {message.text}")

    def on_typing(typing: TypingState):
        if typing.is_typing:
            print(f"  {typing.display_name} is typing...")

    client.on(USER_JOINED_EVENT, lambda name: print(f"-- {name} joined"))
    client.on(USER_LEFT_EVENT, lambda name: print(f"-- {name} left"))
    client.on(USER_LIST_EVENT, lambda users: print(f"-- online: {', '.join(users) or '(nobody)'}"))
    client.on(RECEIVE_MESSAGE_EVENT, on_message)
    client.on(USER_TYPING_EVENT, on_typing)
    client.on(RECEIVE_ERROR_EVENT, lambda text: print(f"!! {text}"))


async def run_terminal(url: str = HUB_URL):
    loop = asyncio.get_running_loop()
    async with open_client(url) as client:
        bind_terminal_handlers(client)
        print(f"Connected to {url}. Commands: /join NAME, /leave, /users, /quit")
        if client.name:
            print(f"(cached name: {client.name})")

        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if line == "/quit":
                break
            if line.startswith("/join"):
                name = line[len("/join"):].strip() or client.name
                if not await client.join(name):
                    print("!! a name is required")
            elif line == "/leave":
                await client.leave()
            elif line == "/users":
                print(f"-- online: {', '.join(await client.get_users()) or '(nobody)'}")
            elif line:
                await client.send(line)


def main():
    setup_logging(log_level="WARNING")
    url = sys.argv[1] if len(sys.argv) > 1 else HUB_URL
    try:
        asyncio.run(run_terminal(url))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
