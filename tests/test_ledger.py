from __future__ import annotations

import json

import pytest

from audit_market.ledger import (
    ChainTip,
    HashChainedLedger,
    InMemoryLedger,
    Ledger,
    canonical_json,
    seal_batch,
    verify_events,
)
from audit_market.schemas import EventType


def test_hash_chained_ledger_verifies_and_detects_tampering(tmp_path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger = HashChainedLedger(ledger_path)

    ledger.append(EventType.MARKET_DEPLOYED, market_id="m1", payload={"owner": "owner"})
    ledger.append(
        EventType.TASK_CREATED,
        market_id="m1",
        payload={"task_id": "T1", "bounty": 100, "submitter": "alice"},
    )
    ledger.verify_chain()

    lines = ledger_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    event2 = json.loads(lines[1])
    event2["payload"]["bounty"] = 999  # tamper without recomputing hash
    lines[1] = canonical_json(event2)
    ledger_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    with pytest.raises(ValueError, match="hash mismatch"):
        HashChainedLedger(ledger_path).verify_chain()


def test_reopened_ledger_continues_sequence(tmp_path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    e0 = HashChainedLedger(ledger_path).append(EventType.MARKET_DEPLOYED, market_id="m1")

    reopened = HashChainedLedger(ledger_path)
    e1 = reopened.append(EventType.AGENT_REGISTERED, market_id="m1", payload={"agent_id": "a1"})

    assert (e0.seq, e1.seq) == (0, 1)
    assert e1.prev_hash == e0.hash
    assert len(reopened) == 2
    reopened.verify_chain()


def test_damaged_log_is_not_extended(tmp_path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger = HashChainedLedger(ledger_path)
    for fee in range(3):
        ledger.append(EventType.FEE_UPDATED, market_id="m1", payload={"fee": fee})

    lines = ledger_path.read_text(encoding="utf-8").splitlines()
    ledger_path.write_text("\n".join([lines[0], lines[2]]) + "\n", encoding="utf-8")

    reopened = HashChainedLedger(ledger_path)
    with pytest.raises(ValueError, match="sequence gap"):
        reopened.verify_chain()
    with pytest.raises(ValueError, match="sequence gap"):
        reopened.append(EventType.FEE_UPDATED, market_id="m1", payload={"fee": 9})
    assert len(ledger_path.read_text(encoding="utf-8").splitlines()) == 2


def test_overwrite_starts_a_new_log(tmp_path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger_path.write_text("not json\n", encoding="utf-8")

    ledger = HashChainedLedger(ledger_path, overwrite=True)
    event = ledger.append(EventType.MARKET_DEPLOYED, market_id="m1")

    assert event.seq == 0
    assert event.prev_hash is None
    assert len(ledger) == 1


def test_missing_file_reads_as_empty(tmp_path) -> None:
    ledger = HashChainedLedger(tmp_path / "nested" / "ledger.jsonl")
    assert list(ledger.iter_events()) == []
    assert len(ledger) == 0
    ledger.verify_chain()


def test_batch_is_written_together(tmp_path) -> None:
    ledger = HashChainedLedger(tmp_path / "ledger.jsonl")
    ledger.append(EventType.MARKET_DEPLOYED, market_id="m1")

    events = ledger.append_batch(
        [
            (EventType.PAYMENT_MADE, {"task_id": "T1", "agent_id": "a1", "amount": 60}),
            (EventType.PAYMENT_MADE, {"task_id": "T1", "agent_id": "a2", "amount": 40}),
            (EventType.TASK_CLOSED, {"task_id": "T1", "remainder": 0}),
        ],
        market_id="m1",
    )

    assert [e.seq for e in events] == [1, 2, 3]
    assert events[1].prev_hash == events[0].hash
    assert [e.type for e in ledger.iter_events()][-1] == EventType.TASK_CLOSED
    ledger.verify_chain()


def test_seal_batch_rejects_empty_and_foreign_market() -> None:
    with pytest.raises(ValueError, match="empty event batch"):
        seal_batch([], tip=ChainTip(), market_id="m1")
    with pytest.raises(ValueError, match="belongs to market 'm1'"):
        seal_batch(
            [(EventType.FEE_UPDATED, {"fee": 1})],
            tip=ChainTip(seq=4, hash="ab", market_id="m1"),
            market_id="m2",
        )


class TestInMemoryLedger:
    def test_satisfies_ledger_protocol(self) -> None:
        assert isinstance(InMemoryLedger(), Ledger)

    def test_append_and_iter(self) -> None:
        ledger = InMemoryLedger()
        ledger.append(EventType.MARKET_DEPLOYED, market_id="m1", payload={"owner": "owner"})
        ledger.append(
            EventType.TASK_CREATED,
            market_id="m1",
            payload={"task_id": "T1", "bounty": 10},
        )

        events = list(ledger.iter_events())
        assert [e.type for e in events] == [EventType.MARKET_DEPLOYED, EventType.TASK_CREATED]
        assert [e.seq for e in events] == [0, 1]
        assert events[0].prev_hash is None
        assert events[1].prev_hash == events[0].hash
        assert verify_events(events).seq == 2

    def test_refuses_events_of_another_market(self) -> None:
        ledger = InMemoryLedger()
        ledger.append(EventType.MARKET_DEPLOYED, market_id="m1")
        with pytest.raises(ValueError, match="belongs to market"):
            ledger.append(EventType.MARKET_DEPLOYED, market_id="m2")
        assert len(ledger) == 1

    def test_verify_chain_detects_tampering(self) -> None:
        ledger = InMemoryLedger()
        ledger.append(EventType.MARKET_DEPLOYED, market_id="m1")
        ledger.append(EventType.TASK_CREATED, market_id="m1", payload={"task_id": "T1", "bounty": 5})

        # Tamper with payload without recomputing hash.
        ledger._events[1].payload["bounty"] = 999

        with pytest.raises(ValueError, match="hash mismatch"):
            ledger.verify_chain()

    def test_iter_events_returns_copies(self) -> None:
        ledger = InMemoryLedger()
        ledger.append(EventType.TASK_CREATED, market_id="m1", payload={"task_id": "T1", "bounty": 5})

        events = list(ledger.iter_events())
        events[0].payload["bounty"] = 999

        ledger.verify_chain()
        assert list(ledger.iter_events())[0].payload["bounty"] == 5
