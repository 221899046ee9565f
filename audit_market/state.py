from __future__ import annotations

from audit_market.schemas import (
    AgentSummary,
    EventType,
    LedgerEvent,
    MarketState,
    TaskStatus,
    TaskSummary,
    ValidityMode,
)


def replay_ledger(*, events: list[LedgerEvent]) -> MarketState:
    """Rebuild the observable market state from its event log.

    Only successful transitions are ever logged, so replay applies every event
    unconditionally, in order.
    """
    if not events:
        raise ValueError("cannot replay empty ledger")

    market_id: str | None = None
    state = MarketState(market_id="")

    for event in events:
        market_id = market_id or event.market_id
        p = event.payload

        if event.type == EventType.MARKET_DEPLOYED:
            state.owner = p.get("owner")
            raw_mode = str(p.get("validity_mode", ValidityMode.SUBSCRIPTION.value))
            if raw_mode in {m.value for m in ValidityMode}:
                state.validity_mode = ValidityMode(raw_mode)
            state.fee = p.get("fee")
            state.duration = p.get("duration")
            continue

        if event.type == EventType.AGENT_REGISTERED:
            agent_id = str(p["agent_id"])
            prior = state.agents.get(agent_id)
            state.agents[agent_id] = AgentSummary(
                agent_id=agent_id,
                expires_at=p.get("expires_at"),
                active=p.get("active"),
                earned=prior.earned if prior is not None else 0,
            )
            state.fees_collected += int(p.get("fee_paid") or 0)
            continue

        if event.type == EventType.AGENT_DEREGISTERED:
            agent_id = str(p["agent_id"])
            if agent_id in state.agents:
                state.agents[agent_id].registered = False
                state.agents[agent_id].expires_at = None
                state.agents[agent_id].active = None
            continue

        if event.type == EventType.SUBSCRIPTION_RENEWED:
            agent_id = str(p["agent_id"])
            if agent_id in state.agents:
                state.agents[agent_id].expires_at = int(p["expires_at"])
            state.fees_collected += int(p.get("fee_paid") or 0)
            continue

        if event.type in (EventType.AGENT_SUSPENDED, EventType.AGENT_REACTIVATED):
            agent_id = str(p["agent_id"])
            if agent_id in state.agents:
                state.agents[agent_id].active = event.type == EventType.AGENT_REACTIVATED
            continue

        if event.type == EventType.FEE_UPDATED:
            state.fee = p.get("fee")
            continue

        if event.type == EventType.DURATION_UPDATED:
            state.duration = int(p["duration"])
            continue

        if event.type == EventType.FEES_WITHDRAWN:
            state.fees_collected -= int(p["amount"])
            continue

        if event.type == EventType.TASK_CREATED:
            task_id = str(p["task_id"])
            state.tasks[task_id] = TaskSummary(
                task_id=task_id,
                submitter=str(p["submitter"]),
                bounty=int(p["bounty"]),
            )
            continue

        if event.type == EventType.WORK_SUBMITTED:
            task = state.tasks.get(str(p["task_id"]))
            if task is not None:
                task.submitters.append(str(p["agent_id"]))
            continue

        if event.type == EventType.FINDINGS_RECORDED:
            task = state.tasks.get(str(p["task_id"]))
            if task is not None:
                task.findings[str(p["agent_id"])] = str(p["findings_value"])
                task.status = TaskStatus.SUBMITTED
            continue

        if event.type == EventType.PAYMENT_MADE:
            task = state.tasks.get(str(p["task_id"]))
            agent_id = str(p["agent_id"])
            amount = int(p["amount"])
            if task is not None:
                task.paid[agent_id] = task.paid.get(agent_id, 0) + amount
            if agent_id in state.agents:
                state.agents[agent_id].earned += amount
            continue

        if event.type == EventType.TASK_CANCELLED:
            task = state.tasks.get(str(p["task_id"]))
            if task is not None:
                task.status = TaskStatus.CANCELLED
                task.refunded += int(p["refund"])
            continue

        if event.type == EventType.TASK_CLOSED:
            task = state.tasks.get(str(p["task_id"]))
            if task is not None:
                task.status = TaskStatus.CLOSED
                task.refunded += int(p.get("remainder") or 0)
            continue

    if market_id is None:
        raise ValueError("ledger missing market_id")
    state.market_id = market_id
    return state


def unbalanced_tasks(state: MarketState) -> list[str]:
    """Terminal tasks whose released funds do not add up to their bounty."""
    return sorted(
        task_id
        for task_id, task in state.tasks.items()
        if task.status.terminal and task.released != task.bounty
    )
