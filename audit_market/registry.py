from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Protocol

from audit_market.access import AccessControl, require_external
from audit_market.bank import REGISTRY_PREFIX, Bank
from audit_market.clock import Clock, SystemClock
from audit_market.errors import (
    AlreadyRegistered,
    InvalidFee,
    InvalidState,
    NotRegistered,
    TransferFailed,
    UnsupportedOperation,
)
from audit_market.ledger import Ledger
from audit_market.schemas import AgentRecord, EventType, ValidityMode

FEE_ACCOUNT = f"{REGISTRY_PREFIX}fees"
DEFAULT_FEE = 100_000_000_000_000_000  # 0.1 ETH in wei
DEFAULT_DURATION = 30 * 24 * 60 * 60


class AgentValidator(Protocol):
    """The only view of the registry the task ledger is allowed to use."""

    def is_valid(self, agent_id: str, now: int | None = None) -> bool: ...


class AgentRegistry(ABC):
    """Agent identities and their validity.

    Subclasses pick the validity model: `SubscriptionRegistry` (paid, expiring)
    or `SuspensionRegistry` (active flag toggled by admins). Operations that
    belong to the other model raise `UnsupportedOperation`.

    Mutations validate first, then record their event (together with any fee
    movement, inside `Bank.atomic()`), and only then change the registry, so a
    failed fee transfer or event write leaves no trace.
    """

    mode: ValidityMode

    def __init__(
        self,
        *,
        owner: str,
        bank: Bank,
        ledger: Ledger,
        market_id: str,
        clock: Clock | None = None,
        fee: int | None = None,
    ) -> None:
        if fee is not None and fee < 0:
            raise ValueError("fee must be >= 0")
        self._access = AccessControl(owner)
        self._bank = bank
        self._ledger = ledger
        self._market_id = market_id
        self._clock = clock or SystemClock()
        self._fee = fee
        self._agents: dict[str, AgentRecord] = {}
        self._lock = threading.RLock()

    @property
    def owner(self) -> str:
        return self._access.owner

    @property
    def fee(self) -> int | None:
        return self._fee

    @property
    def admins(self) -> list[str]:
        return self._access.members()

    @property
    def fees_collected(self) -> int:
        return self._bank.balance_of(FEE_ACCOUNT)

    def get_agent(self, agent_id: str) -> AgentRecord:
        record = self._agents.get(agent_id)
        return record.model_copy() if record is not None else AgentRecord()

    def is_registered(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def is_valid(self, agent_id: str, now: int | None = None) -> bool:
        record = self._agents.get(agent_id)
        if record is None or not record.registered:
            return False
        return self._record_is_valid(record, self._clock.now() if now is None else now)

    # Registration

    def register(self, agent_id: str, payment: int = 0) -> AgentRecord:
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id must be non-empty")
        require_external(agent_id, role="agent")
        with self._lock:
            if agent_id in self._agents:
                raise AlreadyRegistered("Agent already registered")
            self._check_fee(payment)
            record = self._initial_record(agent_id, self._clock.now())
            with self._bank.atomic():
                self._collect(agent_id, payment)
                self._emit(
                    EventType.AGENT_REGISTERED,
                    {"agent_id": agent_id, "fee_paid": payment, **self._validity_payload(record)},
                )
            self._agents[agent_id] = record
            return record.model_copy()

    def deregister(self, caller: str, agent_id: str) -> None:
        with self._lock:
            self._access.require_privileged(caller, action="deregister")
            if agent_id not in self._agents:
                raise NotRegistered("Agent not registered")
            self._emit(EventType.AGENT_DEREGISTERED, {"agent_id": agent_id, "by": caller})
            del self._agents[agent_id]

    # Variant-specific operations, overridden by the matching subclass.

    def renew(self, agent_id: str, payment: int = 0) -> AgentRecord:
        raise UnsupportedOperation(f"renew is not available on a {self.mode.value} registry")

    def suspend(self, caller: str, agent_id: str) -> None:
        raise UnsupportedOperation(f"suspend is not available on a {self.mode.value} registry")

    def reactivate(self, caller: str, agent_id: str) -> None:
        raise UnsupportedOperation(f"reactivate is not available on a {self.mode.value} registry")

    def update_duration(self, caller: str, duration: int) -> None:
        raise UnsupportedOperation(
            f"update_duration is not available on a {self.mode.value} registry"
        )

    # Owner configuration

    def set_admin(self, caller: str, admin: str) -> None:
        with self._lock:
            self._access.require_owner(caller, action="set_admin")
            require_external(admin, role="admin")
            if self._access.is_member(admin):
                raise InvalidState(f"{admin!r} is already an admin")
            self._emit(EventType.ADMIN_ADDED, {"admin": admin})
            self._access.grant(admin)

    def remove_admin(self, caller: str, admin: str) -> None:
        with self._lock:
            self._access.require_owner(caller, action="remove_admin")
            if not self._access.is_member(admin):
                raise InvalidState(f"{admin!r} is not an admin")
            self._emit(EventType.ADMIN_REMOVED, {"admin": admin})
            self._access.revoke(admin)

    def update_fee(self, caller: str, fee: int | None) -> None:
        with self._lock:
            self._access.require_owner(caller, action="update_fee")
            if fee is not None and fee < 0:
                raise InvalidFee("fee must be >= 0")
            self._emit(EventType.FEE_UPDATED, {"fee": fee})
            self._fee = fee

    def withdraw_fees(self, caller: str, to: str) -> int:
        with self._lock:
            self._access.require_owner(caller, action="withdraw_fees")
            require_external(to, role="payee")
            amount = self._bank.balance_of(FEE_ACCOUNT)
            with self._bank.atomic():
                if not self._bank.transfer(FEE_ACCOUNT, to, amount):
                    raise TransferFailed(f"fee withdrawal to {to!r} failed")
                self._emit(EventType.FEES_WITHDRAWN, {"to": to, "amount": amount})
            return amount

    # Internals

    def _check_fee(self, payment: int) -> None:
        if self._fee is None:
            if payment != 0:
                raise InvalidFee("registry takes no fee")
            return
        if payment != self._fee:
            raise InvalidFee("Invalid subscription fee")

    def _collect(self, agent_id: str, payment: int) -> None:
        if payment and not self._bank.transfer(agent_id, FEE_ACCOUNT, payment):
            raise TransferFailed(f"could not collect fee from {agent_id!r}")

    def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        self._ledger.append(event_type, market_id=self._market_id, payload=payload)

    @abstractmethod
    def _initial_record(self, agent_id: str, now: int) -> AgentRecord: ...

    @abstractmethod
    def _record_is_valid(self, record: AgentRecord, now: int) -> bool: ...

    @abstractmethod
    def _validity_payload(self, record: AgentRecord) -> dict[str, Any]: ...


class SubscriptionRegistry(AgentRegistry):
    """Paid registration that is valid until `expires_at`; renewal resets the term from now."""

    mode = ValidityMode.SUBSCRIPTION

    def __init__(
        self,
        *,
        owner: str,
        bank: Bank,
        ledger: Ledger,
        market_id: str,
        clock: Clock | None = None,
        fee: int | None = DEFAULT_FEE,
        duration: int = DEFAULT_DURATION,
    ) -> None:
        if duration <= 0:
            raise ValueError("duration must be > 0")
        super().__init__(
            owner=owner, bank=bank, ledger=ledger, market_id=market_id, clock=clock, fee=fee
        )
        self._duration = int(duration)

    @property
    def duration(self) -> int:
        return self._duration

    def renew(self, agent_id: str, payment: int = 0) -> AgentRecord:
        with self._lock:
            record = self._agents.get(agent_id)
            if record is None:
                raise NotRegistered("Agent not registered")
            self._check_fee(payment)
            expires_at = self._clock.now() + self._duration
            with self._bank.atomic():
                self._collect(agent_id, payment)
                self._emit(
                    EventType.SUBSCRIPTION_RENEWED,
                    {"agent_id": agent_id, "fee_paid": payment, "expires_at": expires_at},
                )
            record.expires_at = expires_at
            return record.model_copy()

    def update_duration(self, caller: str, duration: int) -> None:
        with self._lock:
            self._access.require_owner(caller, action="update_duration")
            if duration <= 0:
                raise ValueError("duration must be > 0")
            self._emit(EventType.DURATION_UPDATED, {"duration": int(duration)})
            self._duration = int(duration)

    def _initial_record(self, agent_id: str, now: int) -> AgentRecord:
        return AgentRecord(agent_id=agent_id, registered=True, expires_at=now + self._duration)

    def _record_is_valid(self, record: AgentRecord, now: int) -> bool:
        return record.expires_at > now

    def _validity_payload(self, record: AgentRecord) -> dict[str, Any]:
        return {"expires_at": record.expires_at}


class SuspensionRegistry(AgentRegistry):
    """Registration stays valid until an admin suspends it."""

    mode = ValidityMode.SUSPENSION

    def suspend(self, caller: str, agent_id: str) -> None:
        self._set_active(caller, agent_id, active=False)

    def reactivate(self, caller: str, agent_id: str) -> None:
        self._set_active(caller, agent_id, active=True)

    def _set_active(self, caller: str, agent_id: str, *, active: bool) -> None:
        action = "reactivate" if active else "suspend"
        with self._lock:
            self._access.require_privileged(caller, action=action)
            record = self._agents.get(agent_id)
            if record is None:
                raise NotRegistered("Agent not registered")
            if record.active == active:
                raise InvalidState(
                    f"agent {agent_id!r} is already {'active' if active else 'suspended'}"
                )
            self._emit(
                EventType.AGENT_REACTIVATED if active else EventType.AGENT_SUSPENDED,
                {"agent_id": agent_id, "by": caller},
            )
            record.active = active

    def _initial_record(self, agent_id: str, now: int) -> AgentRecord:
        return AgentRecord(agent_id=agent_id, registered=True, active=True)

    def _record_is_valid(self, record: AgentRecord, now: int) -> bool:
        return record.active

    def _validity_payload(self, record: AgentRecord) -> dict[str, Any]:
        return {"active": record.active}
