"""Real-time chat connection management backed by Redis."""
from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict

import redis.asyncio as redis
from fastapi import WebSocket
from loguru import logger
from redis.exceptions import RedisError

from tradyfi.config import settings


class ChatConnectionManager:
    """Track active WebSocket connections per chat room."""

    def __init__(self, redis_url: str | None = None, namespace: str = "ws:chat") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._redis: redis.Redis | None = None
        self._lock = asyncio.Lock()
        self._connections: Dict[int, Dict[uuid.UUID, WebSocket]] = defaultdict(dict)

    async def _get_redis(self) -> redis.Redis | None:
        if not self.redis_url:
            return None
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=1.5,
            )
        return self._redis

    def _room_key(self, room_id: int) -> str:
        return f"{self.namespace}:{room_id}"

    async def connect(self, *, websocket: WebSocket, room_id: int, user_id: uuid.UUID) -> None:
        """Register a WebSocket connection for a room participant."""

        await websocket.accept()
        async with self._lock:
            self._connections[room_id][user_id] = websocket
        redis_client = await self._get_redis()
        if redis_client:
            try:
                await redis_client.hset(
                    self._room_key(room_id),
                    str(user_id),
                    datetime.now(timezone.utc).isoformat(),
                )
                await redis_client.expire(self._room_key(room_id), 3600)
            except RedisError as exc:
                logger.warning("Failed to persist connection state in Redis", error=str(exc))
        logger.info("WebSocket connected", room_id=room_id, user_id=str(user_id))

    async def disconnect(self, *, room_id: int, user_id: uuid.UUID) -> None:
        """Remove a participant connection and clean up Redis state."""

        async with self._lock:
            room_connections = self._connections.get(room_id, {})
            room_connections.pop(user_id, None)
            if not room_connections and room_id in self._connections:
                self._connections.pop(room_id, None)
        redis_client = await self._get_redis()
        if redis_client:
            try:
                await redis_client.hdel(self._room_key(room_id), str(user_id))
            except RedisError as exc:
                logger.warning("Failed to clean Redis connection state", error=str(exc))
        logger.info("WebSocket disconnected", room_id=room_id, user_id=str(user_id))

    async def broadcast(self, *, room_id: int, message: dict[str, Any]) -> None:
        """Broadcast a payload to every connection within the room."""

        async with self._lock:
            targets = list(self._connections.get(room_id, {}).values())
        for connection in targets:
            try:
                await connection.send_json(message)
            except (RuntimeError, ConnectionError) as exc:
                logger.warning("Failed to broadcast message", room_id=room_id, error=str(exc))

    async def send_personal_message(
        self,
        *,
        room_id: int,
        user_id: uuid.UUID,
        message: dict[str, Any],
    ) -> None:
        """Send a payload to a single participant connection."""

        async with self._lock:
            connection = self._connections.get(room_id, {}).get(user_id)
        if connection is None:
            return
        await connection.send_json(message)

    async def is_online(self, *, room_id: int, user_id: uuid.UUID) -> bool:
        async with self._lock:
            return user_id in self._connections.get(room_id, {})

    async def list_active_users(self, room_id: int) -> list[str]:
        """Return IDs for connected users (from Redis if available)."""

        redis_client = await self._get_redis()
        if redis_client:
            try:
                members = await redis_client.hkeys(self._room_key(room_id))
                if members:
                    return members
            except RedisError as exc:
                logger.warning("Failed to list Redis connections", error=str(exc))
        async with self._lock:
            return [str(user_id) for user_id in self._connections.get(room_id, {}).keys()]


def build_default_connection_manager() -> ChatConnectionManager:
    """Factory used by API dependencies to create a connection manager."""

    return ChatConnectionManager(redis_url=str(settings.REDIS_URL))
