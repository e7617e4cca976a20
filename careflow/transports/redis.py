"""Redis transport handing messages to an out-of-process delivery worker."""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import OutboundMessage, SendResult, utcnow
from .base import BaseTransport


class RedisTransport(BaseTransport):
    """Queue outbound envelopes on a per-tenant Redis list."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def queue_name(tenant_id: str) -> str:
        return f"careflow:outbound:{tenant_id}"

    async def _push(self, tenant_id: str, envelope: dict) -> SendResult:
        if not self._redis:
            await self.connect()
        envelope["queued_at"] = utcnow().isoformat()
        length = await self._redis.lpush(self.queue_name(tenant_id), json.dumps(envelope))
        return SendResult(ok=True, detail=f"queued ({length} pending)")

    async def send(
        self, recipient_id: str, messages: Sequence[OutboundMessage], tenant_id: str
    ) -> SendResult:
        """Push a ``push`` envelope onto the tenant's outbound list."""
        return await self._push(
            tenant_id,
            {
                "kind": "push",
                "recipient_id": recipient_id,
                "messages": [m.model_dump(exclude_none=True) for m in messages],
            },
        )

    async def link_rich_menu(
        self, recipient_id: str, rich_menu_id: str, tenant_id: str
    ) -> SendResult:
        return await self._push(
            tenant_id,
            {
                "kind": "link_rich_menu",
                "recipient_id": recipient_id,
                "rich_menu_id": rich_menu_id,
            },
        )
