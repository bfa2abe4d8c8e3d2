"""
One operator's client session.

Lifecycle actions run through the state machine against the local mirror,
then get pushed to the store and announced to sibling sessions.
"""
import logging
from typing import Callable, List, Optional

import httpx

from payflow.api.schemas import (
    AuditLogRecord,
    PaymentRequestRecord,
    ProjectDraft,
    ProjectRecord,
    RequestDraft,
    User,
    VendorDraft,
    VendorRecord,
)
from payflow.clock import utcnow
from payflow.config import Settings, load_settings
from payflow.services.cutoff import CutoffPolicy
from payflow.services.reports import summarize
from payflow.services.risk import RiskDetector
from payflow.services.state_machine import RequestStateMachine
from payflow.sync.bus import MessageBus, MessageType
from payflow.sync.engine import ConnectionStatus, SyncEngine
from payflow.sync.repository import MirrorRepository

logger = logging.getLogger(__name__)


class OperatorSession:
    """
    Client facade for a signed-in user.

    Mutations are visible locally as soon as the call returns, even while
    local-only; ``status`` tells whether they reached the store yet.
    """

    def __init__(
        self,
        user: User,
        engine: SyncEngine,
        cutoff_policy: Optional[CutoffPolicy] = None,
        detector: Optional[RiskDetector] = None,
        clock: Callable = utcnow
    ):
        self.user = user
        self.engine = engine
        self.repository = MirrorRepository(engine)
        self.machine = RequestStateMachine(
            self.repository, cutoff_policy=cutoff_policy, detector=detector, clock=clock
        )

    @classmethod
    def from_settings(
        cls,
        user: User,
        settings: Optional[Settings] = None,
        bus: Optional[MessageBus] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "OperatorSession":
        settings = settings or load_settings()
        return cls(
            user,
            SyncEngine.from_settings(settings, bus=bus, transport=transport),
            cutoff_policy=CutoffPolicy.from_settings(settings),
            detector=RiskDetector(window_days=settings.similarity_window_days),
        )

    async def open(self) -> "OperatorSession":
        await self.engine.start()
        logger.info(f"Session opened for {self.user.username} ({self.user.role.value}), {self.status.value}")
        return self

    async def close(self) -> None:
        await self.engine.stop()

    async def __aenter__(self) -> "OperatorSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Reads
    @property
    def status(self) -> ConnectionStatus:
        return self.engine.status

    @property
    def requests(self) -> List[PaymentRequestRecord]:
        return self.repository.list_requests()

    @property
    def projects(self) -> List[ProjectRecord]:
        return self.repository.list_projects()

    @property
    def vendors(self) -> List[VendorRecord]:
        return self.repository.list_vendors()

    @property
    def audit_logs(self) -> List[AuditLogRecord]:
        return self.repository.list_audit_logs()

    def get_request(self, request_id: str) -> Optional[PaymentRequestRecord]:
        return self.repository.get_request(request_id)

    def summary(self):
        return summarize(self.requests, self.projects)

    # Actions
    async def submit_request(self, draft: RequestDraft) -> PaymentRequestRecord:
        record = self.machine.submit(draft, self.user)
        await self._propagate(MessageType.NEW_REQUEST, record.id)
        return self._latest(record)

    async def approve(self, request_id: str) -> PaymentRequestRecord:
        before = self.repository.get_request(request_id)
        record = self.machine.approve(request_id, self.user)
        if before is not None and before.version == record.version:
            return record
        await self._propagate(MessageType.STATUS_UPDATE, request_id)
        return self._latest(record)

    async def hold(self, request_id: str) -> PaymentRequestRecord:
        before = self.repository.get_request(request_id)
        record = self.machine.hold(request_id, self.user)
        if before is not None and before.version == record.version:
            return record
        await self._propagate(MessageType.STATUS_UPDATE, request_id)
        return self._latest(record)

    async def settle(self, request_id: str, utr: str, proof: str) -> PaymentRequestRecord:
        record = self.machine.settle(request_id, self.user, utr, proof)
        await self._propagate(MessageType.STATUS_UPDATE, request_id)
        return self._latest(record)

    async def flag_payment_cutoffs(self) -> List[PaymentRequestRecord]:
        flagged = self.machine.sweep_payment_cutoffs(self.user)
        if flagged:
            await self._propagate(MessageType.STATUS_UPDATE, None)
        return [self._latest(record) for record in flagged]

    async def erase(self, request_id: str) -> None:
        self.machine.erase(request_id, self.user)
        await self._propagate(MessageType.REFRESH, request_id)

    async def create_project(self, draft: ProjectDraft) -> ProjectRecord:
        record = self.machine.create_project(draft, self.user)
        await self._propagate(MessageType.REFRESH, record.id)
        return record

    async def create_vendor(self, draft: VendorDraft) -> VendorRecord:
        record = self.machine.create_vendor(draft, self.user)
        await self._propagate(MessageType.REFRESH, record.id)
        return record

    # Backup
    def export_backup(self) -> str:
        return self.engine.export_backup()

    def import_backup(self, payload: str) -> int:
        return self.engine.import_backup(payload)

    def _latest(self, record: PaymentRequestRecord) -> PaymentRequestRecord:
        """The mirror's current view of ``record``, falling back to what we wrote."""
        return self.repository.get_request(record.id) or record

    async def _propagate(self, message_type: MessageType, entity_id: Optional[str]) -> None:
        delivered = await self.engine.push()
        if not delivered:
            logger.info(f"{message_type.value} for {entity_id} kept locally ({self.status.value})")
            return
        await self.engine.announce(message_type, {"id": entity_id} if entity_id else {})
