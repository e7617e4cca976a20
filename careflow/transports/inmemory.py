"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from typing import List, NamedTuple, Sequence

from ..contracts import OutboundMessage, SendResult
from .base import BaseTransport


class Delivery(NamedTuple):
    tenant_id: str
    recipient_id: str
    messages: List[OutboundMessage]


class InMemoryTransport(BaseTransport):
    """Records deliveries instead of sending them."""

    def __init__(self) -> None:
        self.sent: List[Delivery] = []
        self.rich_menu_links: List[tuple[str, str, str]] = []
        self._lock = asyncio.Lock()

    async def send(
        self, recipient_id: str, messages: Sequence[OutboundMessage], tenant_id: str
    ) -> SendResult:
        """Append the delivery to ``sent``."""
        async with self._lock:
            self.sent.append(Delivery(tenant_id, recipient_id, list(messages)))
        return SendResult(ok=True)

    async def link_rich_menu(
        self, recipient_id: str, rich_menu_id: str, tenant_id: str
    ) -> SendResult:
        async with self._lock:
            self.rich_menu_links.append((tenant_id, recipient_id, rich_menu_id))
        return SendResult(ok=True)

    def texts_for(self, recipient_id: str) -> list[str]:
        """Return text bodies delivered to ``recipient_id`` in order."""
        return [
            m.text or ""
            for d in self.sent
            if d.recipient_id == recipient_id
            for m in d.messages
        ]
