from __future__ import annotations

import threading

import pytest

from tests.helpers import WORK, build_market, open_task, register_agents
from audit_market.access import AccessControl
from audit_market.bank import InMemoryBank, escrow_account
from audit_market.clock import ManualClock
from audit_market.errors import DuplicateSubmission, Unauthorized


class TestInMemoryBank:
    def test_transfer_moves_funds(self) -> None:
        bank = InMemoryBank({"a": 10})
        assert bank.transfer("a", "b", 4)
        assert bank.balance_of("a") == 6
        assert bank.balance_of("b") == 4
        assert bank.total_supply() == 10

    def test_transfer_failures_return_false(self) -> None:
        bank = InMemoryBank({"a": 10})
        assert not bank.transfer("a", "b", 11)
        bank.refuse_deposits("b")
        assert not bank.transfer("a", "b", 1)
        assert bank.balances() == {"a": 10}
        assert bank.transfer("a", "b", 0) is False

    def test_negative_amounts_rejected(self) -> None:
        bank = InMemoryBank({"a": 10})
        with pytest.raises(ValueError):
            bank.transfer("a", "b", -1)
        with pytest.raises(ValueError):
            bank.deposit("a", -1)

    def test_atomic_restores_balances_on_error(self) -> None:
        bank = InMemoryBank({"a": 10})
        with pytest.raises(RuntimeError):
            with bank.atomic():
                bank.transfer("a", "b", 3)
                bank.transfer("a", "c", 3)
                raise RuntimeError("abort")
        assert bank.balances() == {"a": 10}

    def test_atomic_keeps_balances_on_success(self) -> None:
        bank = InMemoryBank({"a": 10})
        with bank.atomic():
            bank.transfer("a", "b", 3)
        assert bank.balances() == {"a": 7, "b": 3}

    def test_escrow_account_naming(self) -> None:
        assert escrow_account("T1") == "escrow:T1"


class TestManualClock:
    def test_advance_and_set(self) -> None:
        clock = ManualClock(100)
        assert clock.advance(5) == 105
        clock.set(200)
        assert clock.now() == 200

    def test_cannot_go_backwards(self) -> None:
        clock = ManualClock(100)
        with pytest.raises(ValueError, match="backwards"):
            clock.advance(-1)
        with pytest.raises(ValueError, match="backwards"):
            clock.set(99)


class TestAccessControl:
    def test_owner_is_always_privileged(self) -> None:
        access = AccessControl("owner")
        assert access.is_privileged("owner")
        assert not access.is_privileged("mod")
        access.require_owner("owner", action="x")
        with pytest.raises(Unauthorized, match="x: caller 'mod'"):
            access.require_privileged("mod", action="x")

    def test_grant_and_revoke_report_changes(self) -> None:
        access = AccessControl("owner", privileged={"mod"})
        assert not access.grant("mod")
        assert access.grant("mod2")
        assert access.members() == ["mod", "mod2"]
        assert access.revoke("mod")
        assert not access.revoke("mod")
        with pytest.raises(Unauthorized):
            access.require_owner("mod2", action="x")

    def test_owner_required(self) -> None:
        with pytest.raises(ValueError):
            AccessControl("")


def test_concurrent_submissions_accept_exactly_one() -> None:
    market = build_market()
    register_agents(market, "agent1")
    open_task(market)
    accepted: list[bool] = []
    rejected: list[bool] = []

    def submit() -> None:
        try:
            market.tasks.submit_work("TASK-001", "agent1", WORK)
            accepted.append(True)
        except DuplicateSubmission:
            rejected.append(True)

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(accepted) == 1
    assert len(rejected) == 7
