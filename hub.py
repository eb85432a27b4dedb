import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from backend import PresenceBackend, presence_backend
from errors import HubError, HubValidationError, InvalidInvocation, MissingPresenceError
from hub_names import (
    GET_USERS,
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
from logging_config import get_logger
from schemas.hub import ChatMessage, Completion, HubEvent, Invocation, TypingState

logger = get_logger(__name__)

MALFORMED_FRAME = "Malformed invocation frame"


def _require_type(target: str, value: Any, expected: type, description: str):
    # bool is an int subclass; keep the check exact
    if type(value) is not expected:
        raise InvalidInvocation(f"{target} expects {description} argument")


class ChatHub:
    """Single-room chat hub.

    Owns the live socket of every connection and fans events out to the members of
    the room group held by the presence backend. Operations take the calling
    connection id as their first argument.

    Frames are never written from the caller's operation: each connection has an
    outbound queue drained by its own writer task, so a stalled recipient only
    delays itself.
    """

    def __init__(self, backend: PresenceBackend = presence_backend):
        self.backend = backend
        # Format: {connection_id: websocket}
        self.connections: Dict[str, WebSocket] = {}
        # Format: {connection_id: queue of serialized frames}
        self._outboxes: Dict[str, asyncio.Queue] = {}
        # Format: {connection_id: writer task}
        self._writers: Dict[str, asyncio.Task] = {}
        # Format: {target: (handler, argument count)}
        self._methods = {
            JOIN_CHAT_ROOM: (self.join_chat_room, 1),
            SEND_MESSAGE: (self.send_message, 1),
            LEAVE_CHAT_ROOM: (self.leave_chat_room, 0),
            SET_TYPING: (self.set_typing, 1),
            GET_USERS: (self.get_users, 0),
        }

    @staticmethod
    def new_connection_id() -> str:
        return uuid.uuid4().hex

    # Lifecycle hooks

    async def on_connected(self, connection_id: str, websocket: WebSocket):
        outbox = asyncio.Queue()
        self.connections[connection_id] = websocket
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(self._write_outbox(connection_id, websocket, outbox))
        logger.info(f"Connection {connection_id} opened ({len(self.connections)} open)")

    async def on_disconnected(self, connection_id: str, exception: Optional[BaseException] = None):
        """Drop the socket and, if the connection had joined, announce its departure."""
        self._drop_connection(connection_id)
        if exception is not None:
            logger.info(f"Connection {connection_id} closed with error: {exception}")
        else:
            logger.info(f"Connection {connection_id} closed ({len(self.connections)} open)")

        display_name = self._remove_presence(connection_id)
        if display_name is None:
            logger.debug(f"Connection {connection_id} had no presence entry on disconnect")
            return
        try:
            await self._announce_departure(display_name)
        except Exception as e:
            logger.warning(f"Could not announce departure of '{display_name}' ({connection_id}): {e}")

    def reset(self):
        for connection_id in list(self.connections):
            self._drop_connection(connection_id)
        self.backend.clear()

    async def flush(self, *connection_ids: str):
        """Wait until the outbound queues of the given connections (all when none given) are written."""
        outboxes = [self._outboxes[cid] for cid in (connection_ids or list(self._outboxes)) if cid in self._outboxes]
        await asyncio.gather(*(outbox.join() for outbox in outboxes))

    # Hub operations

    async def join_chat_room(self, connection_id: str, user_name: Any):
        _require_type(JOIN_CHAT_ROOM, user_name, str, "a string")
        if not user_name.strip():
            raise HubValidationError("Username is required!")

        self.backend.add_user_to_room(connection_id, user_name)
        self.backend.add_to_group(connection_id)
        logger.info(f"User '{user_name}' ({connection_id}) joined the chat room")

        await self.send_to_group(USER_JOINED_EVENT, user_name)
        await self.broadcast_user_list()

    async def send_message(self, connection_id: str, message: Any):
        _require_type(SEND_MESSAGE, message, str, "a string")
        if not message.strip():
            raise HubValidationError("Message is required!")

        display_name = self.backend.get_display_name(connection_id)
        if display_name is None:
            raise MissingPresenceError()

        payload = ChatMessage(display_name=display_name, text=message, timestamp=datetime.now(timezone.utc))
        logger.debug(f"Message from '{display_name}' ({connection_id}): {len(message)} chars")
        await self.send_to_group(RECEIVE_MESSAGE_EVENT, payload.model_dump(by_alias=True, mode="json"))

    async def leave_chat_room(self, connection_id: str):
        display_name = self._remove_presence(connection_id)
        if display_name is None:
            raise MissingPresenceError()

        logger.info(f"User '{display_name}' ({connection_id}) left the chat room")
        await self._announce_departure(display_name)

    async def set_typing(self, connection_id: str, is_typing: Any):
        _require_type(SET_TYPING, is_typing, bool, "a boolean")

        display_name = self.backend.get_display_name(connection_id)
        if display_name is None:
            return

        payload = TypingState(display_name=display_name, is_typing=is_typing, timestamp=datetime.now(timezone.utc))
        await self.send_to_group(
            USER_TYPING_EVENT,
            payload.model_dump(by_alias=True, mode="json"),
            exclude=[connection_id],
        )

    async def get_users(self, connection_id: str) -> List[str]:
        return self.backend.get_display_names_in_room()

    # Fan-out

    async def broadcast_user_list(self):
        await self.send_to_group(USER_LIST_EVENT, self.backend.get_display_names_in_room())

    async def send_to_group(self, target: str, *arguments: Any, exclude: Iterable[str] = ()):
        """Queue an event for every group member except ``exclude``. Never waits on a recipient."""
        excluded = set(exclude)
        recipients = [cid for cid in self.backend.get_group_members() if cid not in excluded]
        frame = self._event_frame(target, arguments)

        queued = sum(1 for conn_id in recipients if self._enqueue(conn_id, frame))
        if queued:
            logger.debug(f"Broadcast '{target}' queued for {queued} connections")

    async def send_to_caller(self, connection_id: str, target: str, *arguments: Any):
        if not self._enqueue(connection_id, self._event_frame(target, arguments)):
            logger.debug(f"Caller {connection_id} is gone, dropping '{target}'")

    # Dispatch

    async def handle_frame(self, connection_id: str, data: str):
        """Parse one invocation frame, run it and reply with a completion when an id was given."""
        raw = None
        try:
            raw = json.loads(data)
            invocation = Invocation.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Malformed frame from {connection_id}: {e}")
            await self._complete(connection_id, self._invocation_id_of(raw), error=MALFORMED_FRAME)
            return

        try:
            result = await self.invoke(connection_id, invocation.target, invocation.arguments)
        except InvalidInvocation as e:
            logger.warning(f"Rejected invocation '{invocation.target}' from {connection_id}: {e}")
            await self._complete(connection_id, invocation.invocation_id, error=str(e))
            return

        await self._complete(connection_id, invocation.invocation_id, result=result)

    async def reject_binary_frame(self, connection_id: str, data: bytes):
        """Invocations travel as text frames only; answer a binary one as malformed."""
        logger.warning(f"Binary frame from {connection_id} rejected ({len(data)} bytes)")
        try:
            raw = json.loads(data)
        except ValueError:
            raw = None
        await self._complete(connection_id, self._invocation_id_of(raw), error=MALFORMED_FRAME)

    async def invoke(self, connection_id: str, target: str, arguments: List[Any]) -> Any:
        """Run a hub operation. Hub errors are reported to the caller as a ``Receive Error`` event."""
        if target not in self._methods:
            raise InvalidInvocation(f"Unknown hub method '{target}'")
        handler, argument_count = self._methods[target]
        if len(arguments) != argument_count:
            raise InvalidInvocation(f"{target} expects {argument_count} argument(s), got {len(arguments)}")

        logger.debug(f"Invoking {target} for {connection_id}")
        try:
            return await handler(connection_id, *arguments)
        except HubError as e:
            logger.info(f"{target} from {connection_id} failed: {e.message}")
            await self.send_to_caller(connection_id, RECEIVE_ERROR_EVENT, e.message)
            return None

    # Internals

    def _remove_presence(self, connection_id: str) -> Optional[str]:
        """Shared by leave and disconnect. Only the caller that actually removes the entry gets the name back."""
        self.backend.remove_from_group(connection_id)
        return self.backend.remove_user_from_room(connection_id)

    async def _announce_departure(self, display_name: str):
        await self.send_to_group(USER_LEFT_EVENT, display_name)
        await self.broadcast_user_list()

    async def _complete(self, connection_id: str, invocation_id, result: Any = None, error: Optional[str] = None):
        if invocation_id is None:
            return
        completion = Completion(invocation_id=invocation_id, result=result, error=error)
        self._enqueue(connection_id, json.dumps(completion.model_dump(by_alias=True, mode="json")))

    def _enqueue(self, connection_id: str, frame: str) -> bool:
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            logger.debug(f"Connection {connection_id} has no open socket, skipping")
            return False
        outbox.put_nowait(frame)
        return True

    def _drop_connection(self, connection_id: str):
        self.connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer is not None:
            writer.cancel()

    async def _write_outbox(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue):
        while True:
            frame = await outbox.get()
            try:
                await self._send_frame(connection_id, websocket, frame)
            finally:
                outbox.task_done()

    @staticmethod
    def _invocation_id_of(raw: Any):
        invocation_id = raw.get("invocationId") if isinstance(raw, dict) else None
        if isinstance(invocation_id, (str, int)) and not isinstance(invocation_id, bool):
            return invocation_id
        return None

    @staticmethod
    def _event_frame(target: str, arguments) -> str:
        return json.dumps(HubEvent(target=target, arguments=list(arguments)).model_dump(mode="json"))

    @staticmethod
    async def _send_frame(connection_id: str, websocket: WebSocket, frame: str):
        try:
            await websocket.send_text(frame)
        except Exception as e:
            logger.warning(f"Error sending to connection {connection_id}: {e}")


chat_hub = ChatHub()
