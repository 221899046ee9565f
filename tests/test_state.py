from __future__ import annotations

import pytest

from tests.helpers import FEE, build_market, judged_task, open_task, register_agents
from audit_market.ledger import InMemoryLedger
from audit_market.schemas import EventType, PayoutWeighting, TaskStatus, ValidityMode
from audit_market.state import replay_ledger, unbalanced_tasks


def _replay(market):
    return replay_ledger(events=list(market.ledger.iter_events()))


def test_replay_matches_live_market() -> None:
    market = build_market(weighting=PayoutWeighting.PROPORTIONAL)
    judged_task(market, "T1", findings={"agent1": 3, "agent2": 4})
    market.tasks.close_task("submitter", "T1")
    open_task(market, "T2", bounty=40)
    market.tasks.cancel_task("submitter", "T2")
    open_task(market, "T3", bounty=10)

    state = _replay(market)

    assert state.market_id == "m1"
    assert state.owner == "owner"
    assert state.fee == FEE
    assert state.fees_collected == 2 * FEE
    assert state.tasks["T1"].status == TaskStatus.CLOSED
    assert state.tasks["T1"].paid == {"agent1": 42, "agent2": 57}
    assert state.tasks["T1"].refunded == 1
    assert state.tasks["T2"].status == TaskStatus.CANCELLED
    assert state.tasks["T2"].refunded == 40
    assert state.tasks["T3"].status == TaskStatus.CREATED
    assert state.agents["agent1"].earned == 42
    assert state.agents["agent2"].earned == 57
    assert unbalanced_tasks(state) == []


def test_replay_tracks_suspension_and_deregistration() -> None:
    market = build_market(mode=ValidityMode.SUSPENSION, fee=None)
    register_agents(market, "agent1", "agent2")
    market.registry.suspend("owner", "agent1")
    market.registry.deregister("owner", "agent2")

    state = _replay(market)

    assert state.validity_mode == ValidityMode.SUSPENSION
    assert state.agents["agent1"].active is False
    assert state.agents["agent2"].registered is False


def test_replay_tracks_fee_withdrawal_and_renewal() -> None:
    market = build_market()
    register_agents(market, "agent1")
    market.clock.advance(100)
    market.registry.renew("agent1", FEE)
    market.registry.withdraw_fees("owner", "treasury")

    state = _replay(market)

    assert state.fees_collected == 0
    assert state.agents["agent1"].expires_at == market.registry.get_agent("agent1").expires_at


def test_unbalanced_tasks_flags_missing_release() -> None:
    ledger = InMemoryLedger()
    ledger.append(EventType.MARKET_DEPLOYED, market_id="m1", payload={"owner": "owner"})
    ledger.append(
        EventType.TASK_CREATED,
        market_id="m1",
        payload={"task_id": "T1", "bounty": 100, "submitter": "alice"},
    )
    ledger.append(
        EventType.PAYMENT_MADE,
        market_id="m1",
        payload={"task_id": "T1", "agent_id": "a1", "amount": 90},
    )
    ledger.append(
        EventType.TASK_CLOSED,
        market_id="m1",
        payload={"task_id": "T1", "remainder": 0},
    )

    state = replay_ledger(events=list(ledger.iter_events()))
    assert unbalanced_tasks(state) == ["T1"]


def test_replay_empty_ledger_raises() -> None:
    with pytest.raises(ValueError, match="empty ledger"):
        replay_ledger(events=[])
