import threading
from typing import Dict, List, Optional, Set

from constants import CHAT_ROOM_GROUP
from logging_config import get_logger

logger = get_logger(__name__)


class PresenceBackend:
    """In-memory presence store: connection id -> display name, plus room group membership.

    Every method takes the lock for exactly one read or mutation, so handlers running
    for different connections never see a half-updated map.
    """

    def __init__(self, group_name: str = CHAT_ROOM_GROUP):
        self.group_name = group_name
        self._lock = threading.Lock()
        self._display_names: Dict[str, str] = {}
        self._group: Set[str] = set()
        logger.info(f"Initializing PresenceBackend for group '{group_name}'")

    def add_user_to_room(self, connection_id: str, display_name: str):
        """Record (or overwrite) the display name a connection joined under."""
        with self._lock:
            previous = self._display_names.get(connection_id)
            self._display_names[connection_id] = display_name
        if previous is None:
            logger.debug(f"Presence entry added for {connection_id} as '{display_name}'")
        else:
            logger.debug(f"Presence entry for {connection_id} renamed '{previous}' -> '{display_name}'")
        return True

    def remove_user_from_room(self, connection_id: str) -> Optional[str]:
        """Remove a presence entry. Returns the removed name, or None if there was none."""
        with self._lock:
            display_name = self._display_names.pop(connection_id, None)
        logger.debug(f"Presence entry for {connection_id} removed: {display_name is not None}")
        return display_name

    def get_display_name(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._display_names.get(connection_id)

    def get_display_names_in_room(self) -> List[str]:
        """Distinct display names in ascending order."""
        with self._lock:
            names = set(self._display_names.values())
        return sorted(names)

    def add_to_group(self, connection_id: str):
        with self._lock:
            self._group.add(connection_id)
        logger.debug(f"Connection {connection_id} added to group '{self.group_name}'")

    def remove_from_group(self, connection_id: str):
        with self._lock:
            self._group.discard(connection_id)
        logger.debug(f"Connection {connection_id} removed from group '{self.group_name}'")

    def get_group_members(self) -> Set[str]:
        with self._lock:
            return set(self._group)

    def clear(self):
        with self._lock:
            entries = len(self._display_names)
            self._display_names.clear()
            self._group.clear()
        logger.info(f"Presence backend cleared ({entries} entries dropped)")


presence_backend = PresenceBackend()
