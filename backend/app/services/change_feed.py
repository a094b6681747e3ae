"""Change feed - row-level change notifications for connected clients.

Session events capture inserts, updates and deletes on the watched
tables at flush time. Changes become publishable only once the
transaction commits; a rollback discards them. Messages carry the table,
the action and the row id: clients re-fetch instead of applying deltas.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi import BackgroundTasks, WebSocket, status
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"orders", "order_items", "order_item_sides", "tables", "payments"})

_PENDING_KEY = "change_feed_pending"
_COMMITTED_KEY = "change_feed_committed"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: str  # insert, update, delete
    row_id: Optional[int]

    def to_message(self) -> Dict[str, Any]:
        return {"type": "change", "table": self.table, "action": self.action, "id": self.row_id}


def _event_for(obj, action: str) -> Optional[ChangeEvent]:
    table = getattr(obj, "__tablename__", None)
    if table not in WATCHED_TABLES:
        return None
    return ChangeEvent(table=table, action=action, row_id=getattr(obj, "id", None))


@event.listens_for(Session, "after_flush")
def _collect_changes(session: Session, flush_context) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        change = _event_for(obj, "insert")
        if change:
            pending.append(change)
    for obj in session.dirty:
        if not session.is_modified(obj, include_collections=False):
            continue
        change = _event_for(obj, "update")
        if change:
            pending.append(change)
    for obj in session.deleted:
        change = _event_for(obj, "delete")
        if change:
            pending.append(change)


@event.listens_for(Session, "after_commit")
def _promote_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    if pending:
        session.info.setdefault(_COMMITTED_KEY, []).extend(pending)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


def drain_committed_changes(session: Session) -> List[ChangeEvent]:
    """Take the committed changes recorded on this session, de-duplicated in order."""
    events = session.info.pop(_COMMITTED_KEY, [])
    seen = set()
    unique = []
    for change in events:
        if change not in seen:
            seen.add(change)
            unique.append(change)
    return unique


# WebSocket Connection Manager for change notifications
class ConnectionManager:
    """Keeps WebSocket subscribers per channel; one channel per watched table."""

    MAX_CONNECTIONS_PER_CHANNEL = 1000

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}

    async def connect(
        self,
        websocket: WebSocket,
        channel: str,
        user_id: Optional[int] = None,
        accept: bool = True,
    ) -> bool:
        """Connect a WebSocket to a channel. Returns False if the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            if accept:
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        if accept:
            await websocket.accept()

        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[id(websocket)] = {
            "connected_at": datetime.now(timezone.utc),
            "user_id": user_id,
        }
        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str) -> None:
        if websocket in self.active_connections.get(channel, []):
            self.active_connections[channel].remove(websocket)
        self.connection_metadata.pop(id(websocket), None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    async def broadcast(self, message: Dict[str, Any], channel: str) -> None:
        """Send a message to every connection on a channel, dropping dead ones."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


ws_manager = ConnectionManager()


async def publish_changes(events: Iterable[ChangeEvent]) -> None:
    """Fan committed changes out to the channel named after each table."""
    for change in events:
        await ws_manager.broadcast(change.to_message(), change.table)


def schedule_publish(background_tasks: BackgroundTasks, session: Session) -> List[ChangeEvent]:
    """Queue this request's committed changes for broadcast after the response is sent."""
    events = drain_committed_changes(session)
    if events:
        background_tasks.add_task(publish_changes, events)
    return events
