"""
Cross-session broadcast.

Sessions sharing a context announce their mutations on a named channel so
siblings refresh without waiting for their own poll. Every message is tagged
with the sender's id and a session never handles its own messages.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    REFRESH = "refresh"
    NEW_REQUEST = "newRequest"
    STATUS_UPDATE = "statusUpdate"


class BusMessage(BaseModel):
    type: MessageType
    payload: Dict[str, Any] = {}
    sender_id: str


Handler = Callable[[BusMessage], Awaitable[None]]


class MessageBus(ABC):
    """Pub/sub transport. In-process, OS-level or network-backed; same contract."""

    @abstractmethod
    async def publish(self, channel: str, message: BusMessage) -> None:
        ...

    @abstractmethod
    def subscribe(self, channel: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""


class InProcessBus(MessageBus):
    """Delivers messages to every handler registered in this process."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    async def publish(self, channel: str, message: BusMessage) -> None:
        handlers = list(self._handlers[channel])
        if not handlers:
            return
        results = await asyncio.gather(
            *(handler(message) for handler in handlers), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    f"Handler failed for {message.type.value} on {channel}",
                    exc_info=(type(result), result, result.__traceback__)
                )

    def subscribe(self, channel: str, handler: Handler) -> Callable[[], None]:
        self._handlers[channel].append(handler)

        def unsubscribe():
            if handler in self._handlers[channel]:
                self._handlers[channel].remove(handler)

        return unsubscribe


class BroadcastChannel:
    """A named channel bound to one session's sender id."""

    def __init__(self, bus: MessageBus, name: str, sender_id: str):
        self.bus = bus
        self.name = name
        self.sender_id = sender_id
        self._unsubscribers: List[Callable[[], None]] = []

    async def post(self, message_type: MessageType, payload: Optional[Dict[str, Any]] = None) -> None:
        message = BusMessage(type=message_type, payload=payload or {}, sender_id=self.sender_id)
        await self.bus.publish(self.name, message)

    def listen(self, handler: Handler) -> None:
        """Deliver sibling messages to ``handler``; our own are dropped."""
        async def deliver(message: BusMessage) -> None:
            if message.sender_id == self.sender_id:
                return
            await handler(message)

        self._unsubscribers.append(self.bus.subscribe(self.name, deliver))

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
