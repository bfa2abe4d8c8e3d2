"""
Synchronization engine: keeps one session's local mirror consistent with the
authoritative store.

Strategies, all active together:
- pull refresh on a schedule (poll_interval while connected)
- optimistic local mutation, pushed in issue order through a durable outbox
- local-only fallback when the store is unreachable, retried every
  reconnect_interval; queued changes are retransmitted on reconnection
- cross-session broadcast so siblings refresh without waiting for their poll

Consistency is eventual: the latest successful pull wins for every record the
store knows. Stale writes are caught by the store's version check and rolled
back here.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from payflow.api.schemas import SyncSnapshot
from payflow.clock import utcnow
from payflow.config import Settings
from payflow.errors import BackupImportError, RejectedByStore, TransportError
from payflow.sync.bus import BroadcastChannel, BusMessage, MessageBus, MessageType
from payflow.sync.cache import LocalCache
from payflow.sync.mirror import COLLECTIONS, LocalMirror, PendingChange
from payflow.sync.transport import StoreClient

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    LOCAL_ONLY = "local-only"


@dataclass
class RejectedChange:
    """
    A change the store refused. Its undelivered operations were rolled back;
    ``delivered`` counts the ones the store had already accepted.
    """
    change: PendingChange
    reason: str
    status_code: int
    delivered: int = 0
    rejected_at: datetime = field(default_factory=utcnow)


class SyncEngine:
    """Sole writer of the local mirror and the durable cache."""

    def __init__(
        self,
        client: StoreClient,
        cache: Optional[LocalCache] = None,
        bus: Optional[MessageBus] = None,
        channel_name: str = "payflow-sync",
        poll_interval: float = 5.0,
        reconnect_interval: float = 15.0,
        session_id: Optional[str] = None
    ):
        self.client = client
        self.cache = cache
        self.session_id = session_id or uuid.uuid4().hex
        self.channel = BroadcastChannel(bus, channel_name, self.session_id) if bus else None
        self.poll_interval = poll_interval
        self.reconnect_interval = reconnect_interval

        self.mirror = LocalMirror()
        self.status = ConnectionStatus.LOCAL_ONLY
        self.last_synced_at: Optional[datetime] = None
        self.rejected: List[RejectedChange] = []

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[ConnectionStatus], None]] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        bus: Optional[MessageBus] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_id: Optional[str] = None
    ) -> "SyncEngine":
        return cls(
            client=StoreClient(settings.store_url, timeout=settings.request_timeout, transport=transport),
            cache=LocalCache(settings.cache_dir, settings.cache_key),
            bus=bus,
            channel_name=settings.channel_name,
            poll_interval=settings.poll_interval,
            reconnect_interval=settings.reconnect_interval,
            session_id=session_id,
        )

    # Connectivity
    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def add_status_listener(self, listener: Callable[[ConnectionStatus], None]) -> None:
        """``listener`` is called with the new status on every change."""
        self._listeners.append(listener)

    def _set_status(self, status: ConnectionStatus, reason: str = "") -> None:
        if status == self.status:
            return
        self.status = status
        if status == ConnectionStatus.LOCAL_ONLY:
            logger.warning(
                f"Local-only mode enabled ({reason}). Changes stay on this device until the store is reachable."
            )
        else:
            logger.info("Connected to store; changes are durable beyond this device")
        for listener in list(self._listeners):
            listener(status)

    # Lifecycle
    async def start(self) -> None:
        """Load the cache, pull once, listen to siblings and schedule refreshes."""
        self.load_cache()
        if self.channel:
            self.channel.listen(self._on_message)
        await self.refresh()
        if self._task is None:
            self._task = asyncio.create_task(self._run_schedule())

    async def stop(self) -> None:
        """Cancel the schedule, stop listening and persist what we have."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.channel:
            self.channel.close()
        self.persist()
        await self.client.aclose()

    async def _run_schedule(self) -> None:
        while True:
            interval = self.poll_interval if self.is_connected else self.reconnect_interval
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Scheduled refresh failed")

    # Cache
    def load_cache(self) -> bool:
        """
        Restore mirror and outbox from the durable cache.

        Raises CacheCorruptError on an unreadable cache; the mirror is left untouched.
        """
        if self.cache is None:
            return False
        payload = self.cache.load()
        if payload is None:
            return False
        self.mirror = LocalMirror.from_payload(payload)
        logger.info(f"Restored local cache with {len(self.mirror.pending)} queued change(s)")
        return True

    def persist(self) -> None:
        if self.cache is not None:
            self.cache.save(self.mirror.to_payload())

    # Mutations
    def stage(self, change: PendingChange) -> None:
        """Apply a change optimistically and queue it durably for the store."""
        self.mirror.apply_optimistic(change)
        self.persist()

    async def push(self) -> bool:
        """
        Send queued changes in order. Returns True when the outbox is empty.

        While local-only nothing is sent; the reconnect schedule retries.
        """
        async with self._lock:
            if not self.mirror.pending:
                return True
            if not self.is_connected:
                return False
            delivered, rejected = await self._flush()
            if rejected:
                # Roll-backs expose the base; converge it with the store
                await self._pull()
            self.persist()
            return delivered

    async def refresh(self) -> bool:
        """
        Pull the full state, then retransmit anything queued.

        Returns True when the store was reached.
        """
        async with self._lock:
            if not await self._pull():
                self.persist()
                return False
            if self.mirror.pending:
                logger.info(f"Retransmitting {len(self.mirror.pending)} queued change(s)")
                _, rejected = await self._flush()
                if rejected:
                    await self._pull()
            self.persist()
            return self.is_connected

    async def _pull(self) -> bool:
        try:
            snapshot = await self.client.get_full_state()
        except TransportError as e:
            self._set_status(ConnectionStatus.LOCAL_ONLY, e.message)
            return False
        self.mirror.apply_authoritative(snapshot)
        self.last_synced_at = utcnow()
        self._set_status(ConnectionStatus.CONNECTED)
        return True

    async def _flush(self):
        """Send the outbox head-first. Returns ``(all_delivered, rejected_count)``."""
        rejected = 0
        while True:
            change = self.mirror.next_pending()
            if change is None:
                return True, rejected

            op = change.operations[change.sent]
            try:
                echo = await self.client.send(op)
            except RejectedByStore as e:
                # Acknowledged operations are already in the base; only the rest roll back
                self.mirror.discard(change.change_id)
                self.persist()
                self.rejected.append(RejectedChange(
                    change=change, reason=e.message, status_code=e.status_code, delivered=change.sent
                ))
                rejected += 1
                if change.sent:
                    logger.error(
                        f"Store accepted {change.sent} of {len(change.operations)} operation(s) of "
                        f"'{change.description}' then rejected the rest ({e.status_code}): {e.message}"
                    )
                else:
                    logger.warning(f"Store rejected '{change.description}' ({e.status_code}): {e.message}")
                continue
            except TransportError as e:
                self._set_status(ConnectionStatus.LOCAL_ONLY, e.message)
                return False, rejected

            self.mirror.acknowledge(change.change_id, echo)
            self.persist()

    # Broadcast
    async def announce(self, message_type: MessageType, payload: Optional[Dict[str, Any]] = None) -> None:
        if self.channel:
            await self.channel.post(message_type, payload)

    async def _on_message(self, message: BusMessage) -> None:
        logger.debug(f"Sibling {message.sender_id} announced {message.type.value}; refreshing")
        await self.refresh()

    # Backup
    def export_backup(self) -> str:
        """Serialize the visible state for safekeeping."""
        return self.mirror.view().model_dump_json(indent=2)

    def import_backup(self, payload: str) -> int:
        """
        Restore a backup into the local mirror.

        The whole payload is validated first; a corrupt payload raises
        BackupImportError and nothing changes. Records already known are kept
        as they are. The next successful pull stays canonical.
        """
        try:
            backup = SyncSnapshot.model_validate_json(payload)
        except (ValidationError, ValueError) as e:
            raise BackupImportError(f"Backup payload is corrupt: {e}")

        base = SyncSnapshot.model_validate(self.mirror.to_payload()["authoritative"])
        restored = 0
        merged = {}
        for name in COLLECTIONS:
            current = list(getattr(base, name))
            known = {item.id for item in current}
            added = [item for item in getattr(backup, name) if item.id not in known]
            restored += len(added)
            merged[name] = current + added

        self.mirror.apply_authoritative(SyncSnapshot(**merged))
        self.persist()
        logger.info(f"Imported {restored} record(s) from backup")
        return restored
