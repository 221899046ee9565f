"""Hash-chained market event log.

Every successful market transition is recorded as `LedgerEvent`s. Each event
carries its position in the log (`seq`) and commits to the hash of its
predecessor, and a log belongs to exactly one market: appending another
market's event is refused. A transition that produces several events (closing
a task records each payment, then the closure) appends them as one batch, so
the batch is either fully written or not at all from the caller's view.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from audit_market.schemas import EventType, LedgerEvent

EventEntry = tuple[EventType, dict[str, Any]]


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@runtime_checkable
class Ledger(Protocol):
    def append(
        self,
        event_type: EventType,
        *,
        market_id: str,
        payload: dict[str, Any] | None = ...,
        ts: datetime | None = ...,
    ) -> LedgerEvent: ...

    def append_batch(
        self,
        entries: Sequence[EventEntry],
        *,
        market_id: str,
        ts: datetime | None = ...,
    ) -> list[LedgerEvent]: ...

    def iter_events(self) -> Iterator[LedgerEvent]: ...

    def verify_chain(self) -> None: ...

    def __len__(self) -> int: ...


@dataclass(frozen=True)
class ChainTip:
    """Where the next event attaches: its seq, the hash it links to, and the owning market."""

    seq: int = 0
    hash: str | None = None
    market_id: str | None = None

    def after(self, event: LedgerEvent) -> ChainTip:
        return ChainTip(seq=event.seq + 1, hash=event.hash, market_id=event.market_id)


def event_digest(event: LedgerEvent) -> str:
    body = {
        "schema_version": event.schema_version,
        "seq": event.seq,
        "event_id": event.event_id,
        "prev_hash": event.prev_hash,
        "ts": event.ts.isoformat(),
        "market_id": event.market_id,
        "type": event.type.value,
        "payload": event.payload,
    }
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()


def seal_batch(
    entries: Sequence[EventEntry],
    *,
    tip: ChainTip,
    market_id: str,
    ts: datetime | None = None,
) -> list[LedgerEvent]:
    """Build the chained events for `entries` on top of `tip` without storing them."""
    if not entries:
        raise ValueError("empty event batch")
    if tip.market_id is not None and market_id != tip.market_id:
        raise ValueError(f"ledger belongs to market {tip.market_id!r}, not {market_id!r}")
    ts = ts or datetime.now(tz=UTC)

    sealed: list[LedgerEvent] = []
    for event_type, payload in entries:
        event = LedgerEvent(
            seq=tip.seq,
            prev_hash=tip.hash,
            ts=ts,
            market_id=market_id,
            type=event_type,
            payload=dict(payload),
        )
        event.hash = event_digest(event)
        sealed.append(event)
        tip = tip.after(event)
    return sealed


def verify_events(events: Iterable[LedgerEvent]) -> ChainTip:
    """Check sequence, linkage, market ownership and hashes; return the tip."""
    tip = ChainTip()
    for event in events:
        if event.seq != tip.seq:
            raise ValueError(f"ledger sequence gap: expected {tip.seq}, found {event.seq}")
        if event.prev_hash != tip.hash:
            raise ValueError("ledger prev_hash mismatch")
        if tip.market_id is not None and event.market_id != tip.market_id:
            raise ValueError(f"ledger mixes markets at seq {event.seq}")
        if event.hash != event_digest(event):
            raise ValueError("ledger hash mismatch")
        tip = tip.after(event)
    return tip


class _ChainedLedger:
    """Shared append path; backends only store sealed batches and read them back."""

    _tip: ChainTip | None = None

    def append(
        self,
        event_type: EventType,
        *,
        market_id: str,
        payload: dict[str, Any] | None = None,
        ts: datetime | None = None,
    ) -> LedgerEvent:
        return self.append_batch([(event_type, payload or {})], market_id=market_id, ts=ts)[0]

    def append_batch(
        self,
        entries: Sequence[EventEntry],
        *,
        market_id: str,
        ts: datetime | None = None,
    ) -> list[LedgerEvent]:
        tip = self._tip if self._tip is not None else verify_events(self.iter_events())
        sealed = seal_batch(entries, tip=tip, market_id=market_id, ts=ts)
        self._store(sealed)
        self._tip = tip.after(sealed[-1])
        return [e.model_copy(deep=True) for e in sealed]

    def verify_chain(self) -> None:
        verify_events(self.iter_events())

    def iter_events(self) -> Iterator[LedgerEvent]:
        raise NotImplementedError

    def _store(self, events: list[LedgerEvent]) -> None:
        raise NotImplementedError


class HashChainedLedger(_ChainedLedger):
    """JSONL file, one event per line.

    An existing file is verified in full before the first append extends it,
    so a damaged log is never built upon. `overwrite=True` starts a new log.
    """

    def __init__(self, path: Path, *, overwrite: bool = False) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._tip = None
        if overwrite:
            self._path.write_text("", encoding="utf-8")
            self._tip = ChainTip()

    @property
    def path(self) -> Path:
        return self._path

    def iter_events(self) -> Iterator[LedgerEvent]:
        if not self._path.exists():
            return iter(())
        return self._read()

    def _read(self) -> Iterator[LedgerEvent]:
        with self._path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield LedgerEvent.model_validate_json(line)

    def _store(self, events: list[LedgerEvent]) -> None:
        # One write per batch keeps a transition's events together on disk.
        text = "".join(canonical_json(e.model_dump(mode="json")) + "\n" for e in events)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(text)

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_events())


class InMemoryLedger(_ChainedLedger):
    """Same contract as HashChainedLedger, kept in a list (tests and simulations)."""

    def __init__(self) -> None:
        self._events: list[LedgerEvent] = []
        self._tip = ChainTip()

    def iter_events(self) -> Iterator[LedgerEvent]:
        for event in self._events:
            yield event.model_copy(deep=True)

    def verify_chain(self) -> None:
        verify_events(self._events)

    def _store(self, events: list[LedgerEvent]) -> None:
        self._events.extend(events)

    def __len__(self) -> int:
        return len(self._events)
