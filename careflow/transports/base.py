"""Base transport interface for outbound patient messaging."""

from __future__ import annotations

import abc
from typing import Sequence

from ..contracts import OutboundMessage, SendResult


class BaseTransport(metaclass=abc.ABCMeta):
    """Abstract base transport for a messaging provider."""

    async def connect(self) -> None:
        """Open connection to provider (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to provider (no-op by default)."""
        pass

    @abc.abstractmethod
    async def send(
        self, recipient_id: str, messages: Sequence[OutboundMessage], tenant_id: str
    ) -> SendResult:
        """Deliver ``messages`` to one recipient."""
        raise NotImplementedError

    @abc.abstractmethod
    async def link_rich_menu(
        self, recipient_id: str, rich_menu_id: str, tenant_id: str
    ) -> SendResult:
        """Switch the recipient's rich menu."""
        raise NotImplementedError
