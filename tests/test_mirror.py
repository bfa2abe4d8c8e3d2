"""
Tests for local mirror reconciliation and the durable cache.

No networking: the mirror is driven directly with snapshots and changes.
"""
import json

import pytest

from payflow.api.schemas import RequestUpdate, SyncSnapshot
from payflow.errors import CacheCorruptError
from payflow.models.enums import RequestStatus
from payflow.sync.cache import LocalCache
from payflow.sync.mirror import LocalMirror, Operation, OperationKind, PendingChange

APPROVAL_LOG = {
    "id": "LOG-1",
    "action": "Approved",
    "entity_type": "PaymentRequest",
    "entity_id": None,
    "actor_name": "Avery Approver",
    "actor_role": "approver",
    "timestamp": "2026-03-02T10:05:00",
}


def approve_change(record, change_id="CHG-1"):
    payload = RequestUpdate(
        status=RequestStatus.APPROVED,
        expected_version=record.version,
        audit={**APPROVAL_LOG, "entity_id": record.id},
    ).model_dump(mode="json", exclude_unset=True)
    return PendingChange(
        change_id=change_id,
        description=f"Approve {record.id}",
        operations=[Operation(kind=OperationKind.UPDATE_REQUEST, entity_id=record.id, payload=payload)],
    )


def submit_change(record, change_id="CHG-2"):
    log = {**APPROVAL_LOG, "id": "LOG-2", "action": "Submitted", "entity_id": record.id}
    return PendingChange(
        change_id=change_id,
        description=f"Submit {record.id}",
        operations=[
            Operation(kind=OperationKind.CREATE_REQUEST, entity_id=record.id,
                      payload=record.model_dump(mode="json")),
            Operation(kind=OperationKind.CREATE_AUDIT_LOG, entity_id="LOG-2", payload=log),
        ],
    )


class TestAuthoritative:

    def test_identical_snapshot_twice_is_byte_identical(self, make_record):
        """
        INVARIANT: replaying the same pull leaves the mirror byte-for-byte identical.
        """
        snapshot = SyncSnapshot(requests=[make_record(), make_record(bill_number="INV-2")])
        mirror = LocalMirror()

        mirror.apply_authoritative(snapshot)
        first = mirror.dumps()
        mirror.apply_authoritative(snapshot)

        assert mirror.dumps() == first

    def test_snapshot_replaces_base(self, make_record):
        record = make_record()
        mirror = LocalMirror(SyncSnapshot(requests=[record]))

        mirror.apply_authoritative(SyncSnapshot())

        assert mirror.requests() == []

    def test_requests_are_newest_first(self, make_record):
        from datetime import timedelta
        older = make_record()
        newer = make_record(submitted_at=older.submitted_at + timedelta(hours=1))

        mirror = LocalMirror(SyncSnapshot(requests=[older, newer]))

        assert [r.id for r in mirror.requests()] == [newer.id, older.id]


class TestOptimistic:

    def test_optimistic_change_is_visible_immediately(self, make_record):
        record = make_record()
        mirror = LocalMirror(SyncSnapshot(requests=[record]))

        mirror.apply_optimistic(approve_change(record))

        shown = mirror.get_request(record.id)
        assert shown.status == RequestStatus.APPROVED
        assert shown.version == 2
        assert len(mirror.audit_logs(entity_id=record.id)) == 1

    def test_pull_between_apply_and_ack_keeps_optimistic_value(self, make_record):
        record = make_record()
        snapshot = SyncSnapshot(requests=[record])
        mirror = LocalMirror(snapshot)
        mirror.apply_optimistic(approve_change(record))

        mirror.apply_authoritative(snapshot)

        assert mirror.get_request(record.id).status == RequestStatus.APPROVED
        assert len(mirror.pending) == 1

    def test_acknowledge_folds_echo_into_base(self, make_record):
        record = make_record()
        mirror = LocalMirror(SyncSnapshot(requests=[record]))
        change = approve_change(record)
        mirror.apply_optimistic(change)

        echo = record.model_copy(update={"status": RequestStatus.APPROVED, "version": 2}).model_dump(mode="json")
        mirror.acknowledge(change.change_id, echo)

        base = mirror.to_payload()["authoritative"]
        assert mirror.pending == []
        assert mirror.get_request(record.id).status == RequestStatus.APPROVED
        assert base["requests"][0]["version"] == 2
        assert [log["id"] for log in base["audit_logs"]] == ["LOG-1"]

    def test_discard_after_partial_delivery_keeps_delivered_part(self, make_record):
        record = make_record()
        mirror = LocalMirror()
        change = submit_change(record)
        mirror.apply_optimistic(change)
        mirror.acknowledge(change.change_id, record.model_dump(mode="json"))

        mirror.discard(change.change_id)

        assert mirror.get_request(record.id) is not None
        assert mirror.audit_logs() == []

    def test_discard_rolls_back(self, make_record):
        record = make_record()
        mirror = LocalMirror(SyncSnapshot(requests=[record]))
        change = approve_change(record)
        mirror.apply_optimistic(change)

        mirror.discard(change.change_id)

        assert mirror.get_request(record.id).status == RequestStatus.NEW
        assert mirror.audit_logs() == []

    def test_create_does_not_overwrite_known_record(self, make_record):
        stored = make_record(status=RequestStatus.APPROVED, version=2)
        mirror = LocalMirror(SyncSnapshot(requests=[stored]))
        retransmit = stored.model_copy(update={"status": RequestStatus.NEW, "version": 1})

        mirror.apply_optimistic(PendingChange(change_id="CHG-9", operations=[
            Operation(kind=OperationKind.CREATE_REQUEST, entity_id=stored.id,
                      payload=retransmit.model_dump(mode="json")),
        ]))

        assert mirror.get_request(stored.id).status == RequestStatus.APPROVED


class TestCache:

    def test_round_trip_keeps_pending(self, tmp_path, make_record):
        record = make_record()
        mirror = LocalMirror(SyncSnapshot(requests=[record]))
        mirror.apply_optimistic(approve_change(record))
        cache = LocalCache(tmp_path, "state")

        cache.save(mirror.to_payload())
        restored = LocalMirror.from_payload(cache.load())

        assert restored.dumps() == mirror.dumps()
        assert restored.get_request(record.id).status == RequestStatus.APPROVED

    def test_missing_cache_is_none(self, tmp_path):
        assert LocalCache(tmp_path / "nothing-here").load() is None

    def test_corrupt_cache_raises(self, tmp_path):
        cache = LocalCache(tmp_path, "state")
        cache.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(CacheCorruptError):
            cache.load()

    def test_malformed_state_raises(self, tmp_path):
        cache = LocalCache(tmp_path, "state")
        cache.path.write_text(json.dumps({"authoritative": {"requests": [{"id": 1}]}}), encoding="utf-8")

        with pytest.raises(CacheCorruptError):
            LocalMirror.from_payload(cache.load())

    def test_clear(self, tmp_path):
        cache = LocalCache(tmp_path, "state")
        cache.save({"authoritative": {}, "pending": []})

        cache.clear()

        assert not cache.path.exists()
