from __future__ import annotations

from typing import Dict, FrozenSet

from app.schemas.simulation import VehicleStatus

S = VehicleStatus

ALLOWED_TRANSITIONS: Dict[VehicleStatus, FrozenSet[VehicleStatus]] = {
    S.AWAITING_STATUS: frozenset({S.IDLE, S.ERROR}),
    S.IDLE: frozenset({S.EN_ROUTE, S.ERROR}),
    S.EN_ROUTE: frozenset({S.PENDING_DELIVERY_CONFIRMATION, S.IDLE, S.ERROR}),
    S.PENDING_DELIVERY_CONFIRMATION: frozenset({S.COMPLETED, S.ERROR}),
    # terminal for a run; a fresh start() rebuilds instead of transitioning
    S.COMPLETED: frozenset(),
    S.ERROR: frozenset(),
}

TERMINAL: FrozenSet[VehicleStatus] = frozenset({S.COMPLETED, S.ERROR})

# Statuses the cleanup sweep removes from the active registry.
INACTIVE: FrozenSet[VehicleStatus] = frozenset({S.COMPLETED, S.ERROR, S.AWAITING_STATUS})


def can_transition(old: VehicleStatus, new: VehicleStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(old, frozenset())


def is_terminal(status: VehicleStatus) -> bool:
    return status in TERMINAL
