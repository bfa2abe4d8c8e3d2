"""
Client-side reconciliation of the local mirror.

The mirror keeps two layers:

- the authoritative base: the last snapshot pulled from the store, plus the
  store's echoes of changes it has acknowledged since
- the outbox: optimistic changes not yet acknowledged, in issue order

The visible state is always the base with the outbox replayed on top, so a
pull that lands between an optimistic apply and its confirmation does not
lose the optimistic value, and replaying the same snapshot is a no-op.
"""
import copy
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from payflow.api.schemas import (
    AuditLogRecord,
    PaymentRequestRecord,
    ProjectRecord,
    SyncSnapshot,
    VendorRecord,
)
from payflow.errors import CacheCorruptError

COLLECTIONS = ("projects", "vendors", "requests", "audit_logs")

# (timestamp field, newest first?) per collection
_ORDERING = {
    "projects": ("created_at", False),
    "vendors": ("created_at", False),
    "requests": ("submitted_at", True),
    "audit_logs": ("timestamp", True),
}


class OperationKind(str, Enum):
    CREATE_REQUEST = "create_request"
    UPDATE_REQUEST = "update_request"
    DELETE_REQUEST = "delete_request"
    CREATE_PROJECT = "create_project"
    CREATE_VENDOR = "create_vendor"
    CREATE_AUDIT_LOG = "create_audit_log"


_MODEL_OF = {
    "projects": ProjectRecord,
    "vendors": VendorRecord,
    "requests": PaymentRequestRecord,
    "audit_logs": AuditLogRecord,
}

_COLLECTION_OF = {
    OperationKind.CREATE_REQUEST: "requests",
    OperationKind.UPDATE_REQUEST: "requests",
    OperationKind.DELETE_REQUEST: "requests",
    OperationKind.CREATE_PROJECT: "projects",
    OperationKind.CREATE_VENDOR: "vendors",
    OperationKind.CREATE_AUDIT_LOG: "audit_logs",
}


class Operation(BaseModel):
    """One store call. ``payload`` is JSON-ready."""
    kind: OperationKind
    entity_id: str
    payload: Dict[str, Any] = {}


class PendingChange(BaseModel):
    """
    A unit of optimistic mutation: a record change and its audit entry travel
    together. ``sent`` counts operations the store has acknowledged.
    """
    change_id: str
    description: str = ""
    operations: List[Operation]
    sent: int = 0


def _index(snapshot: SyncSnapshot) -> Dict[str, Dict[str, dict]]:
    data = snapshot.model_dump(mode="json")
    return {name: {item["id"]: item for item in data[name]} for name in COLLECTIONS}


def _add_embedded_audit(state: Dict[str, Dict[str, dict]], op: Operation) -> None:
    # Updates and erases carry their audit entry in the same store call
    entry = op.payload.get("audit")
    if entry:
        state["audit_logs"].setdefault(entry["id"], copy.deepcopy(entry))


def _apply(state: Dict[str, Dict[str, dict]], op: Operation) -> None:
    """Replay an unacknowledged operation on top of ``state``."""
    records = state[_COLLECTION_OF[op.kind]]
    if op.kind == OperationKind.UPDATE_REQUEST:
        current = records.get(op.entity_id)
        if current is None:
            return
        changes = dict(op.payload)
        changes.pop("audit", None)
        expected = changes.pop("expected_version", None)
        current.update(changes)
        if expected is not None:
            current["version"] = max(current.get("version", 1), expected + 1)
        _add_embedded_audit(state, op)
    elif op.kind == OperationKind.DELETE_REQUEST:
        records.pop(op.entity_id, None)
        _add_embedded_audit(state, op)
    else:
        # The store is canonical for ids it already knows
        records.setdefault(op.entity_id, copy.deepcopy(op.payload))


def _fold(state: Dict[str, Dict[str, dict]], op: Operation, echo: Optional[dict]) -> None:
    """Fold an acknowledged operation into the authoritative base."""
    name = _COLLECTION_OF[op.kind]
    records = state[name]
    if op.kind == OperationKind.DELETE_REQUEST:
        records.pop(op.entity_id, None)
        _add_embedded_audit(state, op)
    elif echo is not None:
        records[op.entity_id] = _MODEL_OF[name].model_validate(echo).model_dump(mode="json")
        _add_embedded_audit(state, op)
    else:
        _apply(state, op)


class LocalMirror:
    """Owns the client's copy of the store. Written only by the sync engine."""

    def __init__(
        self,
        snapshot: Optional[SyncSnapshot] = None,
        pending: Optional[List[PendingChange]] = None
    ):
        self._base = _index(snapshot or SyncSnapshot())
        self._pending: List[PendingChange] = list(pending or [])
        self._view: Dict[str, Dict[str, dict]] = {}
        self.reconcile()

    # Reconciliation
    def apply_authoritative(self, snapshot: SyncSnapshot) -> None:
        """Replace the base with a pulled snapshot and replay the outbox."""
        self._base = _index(snapshot)
        self.reconcile()

    def apply_optimistic(self, change: PendingChange) -> None:
        """Queue a change and show it immediately."""
        self._pending.append(change)
        for op in change.operations[change.sent:]:
            _apply(self._view, op)

    def reconcile(self) -> None:
        """Rebuild the visible state from the base plus unacknowledged operations."""
        view = copy.deepcopy(self._base)
        for change in self._pending:
            for op in change.operations[change.sent:]:
                _apply(view, op)
        self._view = view

    def acknowledge(self, change_id: str, echo: Optional[dict] = None) -> None:
        """The store accepted the next operation of ``change_id``; ``echo`` is its stored record."""
        change = self._find(change_id)
        op = change.operations[change.sent]
        _fold(self._base, op, echo)
        change.sent += 1
        if change.sent >= len(change.operations):
            self._pending.remove(change)
        self.reconcile()

    def discard(self, change_id: str) -> PendingChange:
        """Drop a change the store refused, rolling back its undelivered operations."""
        change = self._find(change_id)
        self._pending.remove(change)
        self.reconcile()
        return change

    def _find(self, change_id: str) -> PendingChange:
        for change in self._pending:
            if change.change_id == change_id:
                return change
        raise KeyError(change_id)

    # Reads
    @property
    def pending(self) -> List[PendingChange]:
        return list(self._pending)

    def next_pending(self) -> Optional[PendingChange]:
        return self._pending[0] if self._pending else None

    def _ordered(self, state: Dict[str, Dict[str, dict]], name: str) -> List[dict]:
        field, newest_first = _ORDERING[name]
        return sorted(
            state[name].values(),
            key=lambda item: (item.get(field) or "", item["id"]),
            reverse=newest_first,
        )

    def _payload(self, state: Dict[str, Dict[str, dict]]) -> Dict[str, List[dict]]:
        return {name: self._ordered(state, name) for name in COLLECTIONS}

    def view(self) -> SyncSnapshot:
        return SyncSnapshot.model_validate(self._payload(self._view))

    def requests(self) -> List[PaymentRequestRecord]:
        return [PaymentRequestRecord.model_validate(r) for r in self._ordered(self._view, "requests")]

    def get_request(self, request_id: str) -> Optional[PaymentRequestRecord]:
        item = self._view["requests"].get(request_id)
        return PaymentRequestRecord.model_validate(item) if item else None

    def projects(self) -> List[ProjectRecord]:
        return [ProjectRecord.model_validate(p) for p in self._ordered(self._view, "projects")]

    def vendors(self) -> List[VendorRecord]:
        return [VendorRecord.model_validate(v) for v in self._ordered(self._view, "vendors")]

    def audit_logs(self, entity_id: Optional[str] = None) -> List[AuditLogRecord]:
        return [
            AuditLogRecord.model_validate(entry)
            for entry in self._ordered(self._view, "audit_logs")
            if entity_id is None or entry["entity_id"] == entity_id
        ]

    # Persistence
    def to_payload(self) -> Dict[str, Any]:
        return {
            "authoritative": self._payload(self._base),
            "pending": [change.model_dump(mode="json") for change in self._pending],
        }

    def dumps(self) -> str:
        """Canonical serialization; identical state gives identical bytes."""
        return json.dumps(self.to_payload(), sort_keys=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LocalMirror":
        try:
            snapshot = SyncSnapshot.model_validate(payload.get("authoritative") or {})
            pending = [PendingChange.model_validate(c) for c in payload.get("pending") or []]
        except (ValidationError, AttributeError, TypeError) as e:
            raise CacheCorruptError(f"Cached state is malformed: {e}")
        return cls(snapshot=snapshot, pending=pending)
