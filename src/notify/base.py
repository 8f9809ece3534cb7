"""Delivery channel interface and generic wrappers."""

import asyncio
import logging
from abc import ABC, abstractmethod

from src.core.errors import DeliveryError
from src.core.schemas import NotificationPayload

logger = logging.getLogger(__name__)


class DeliveryChannel(ABC):
    """Base class that every delivery channel must implement."""

    @property
    @abstractmethod
    def channel_id(self) -> str:
        """Unique identifier for this channel (e.g. 'smtp')."""

    @abstractmethod
    async def send(self, address: str, payload: NotificationPayload) -> None:
        """Deliver one notification to one address. Raises on failure."""


class TimeoutChannel(DeliveryChannel):
    """Bounds every call of the wrapped channel by ``timeout_s`` seconds.

    A hung recipient then fails its agency instead of stalling the batch.
    """

    def __init__(self, inner: DeliveryChannel, timeout_s: float) -> None:
        self._inner = inner
        self._timeout_s = timeout_s

    @property
    def channel_id(self) -> str:
        return self._inner.channel_id

    @property
    def inner(self) -> DeliveryChannel:
        return self._inner

    async def send(self, address: str, payload: NotificationPayload) -> None:
        try:
            await asyncio.wait_for(self._inner.send(address, payload), self._timeout_s)
        except TimeoutError as e:
            msg = f"send to {address} timed out after {self._timeout_s:g}s"
            raise DeliveryError(msg) from e


class LoggingChannel(DeliveryChannel):
    """Dry-run channel: logs and records each send instead of delivering it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationPayload]] = []

    @property
    def channel_id(self) -> str:
        return "log"

    async def send(self, address: str, payload: NotificationPayload) -> None:
        self.sent.append((address, payload))
        logger.info(
            "[DRY RUN] candidate %s -> %s <%s>",
            payload.candidate.candidate_id, payload.agency_name, address,
        )
