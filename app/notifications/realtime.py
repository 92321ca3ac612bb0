"""Connection table for notification WebSocket sessions."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class NotificationConnectionManager:
  """Track live WebSocket sessions grouped by user."""

  def __init__(self) -> None:
    self._connections: defaultdict[uuid.UUID, set[WebSocket]] = defaultdict(set)

  async def connect(self, user_id: uuid.UUID, websocket: WebSocket) -> None:
    """Accept the socket and register it for the user."""
    await websocket.accept()
    self._connections[user_id].add(websocket)
    logger.debug("WebSocket connected user_id=%s sessions=%s", user_id, len(self._connections[user_id]))

  def disconnect(self, user_id: uuid.UUID, websocket: WebSocket) -> None:
    connections = self._connections.get(user_id)
    if connections is None:
      return
    connections.discard(websocket)
    if not connections:
      self._connections.pop(user_id, None)

  def session_count(self, user_id: uuid.UUID) -> int:
    return len(self._connections.get(user_id, ()))

  async def send_to_user(self, user_id: uuid.UUID, message: dict[str, Any]) -> int:
    """Send the message to every open session of the user and return how many accepted it.

    Sessions that fail to receive are dropped from the table; the failure is
    re-raised only when no session received the message.
    """
    connections = list(self._connections.get(user_id, ()))
    delivered = 0
    last_error: Exception | None = None
    for connection in connections:
      try:
        await connection.send_json(message)
        delivered += 1
      except Exception as exc:  # noqa: BLE001
        # Drop sessions that can no longer be written to so they are not retried.
        self.disconnect(user_id, connection)
        last_error = exc
    if delivered == 0 and last_error is not None:
      raise last_error
    return delivered
