import pytest

from app.policies.status_mapping import (
    DEFAULT_STATUS,
    EXTERNAL_STATUS_MAP,
    is_known_status,
    map_external_status,
    normalize_status_code,
)
from app.policies.transitions import can_transition, is_terminal
from app.schemas.simulation import VehicleStatus as S


@pytest.mark.parametrize("code,expected", [
    ("PLANNED", S.IDLE),
    ("booked", S.IDLE),
    ("at-pickup", S.IDLE),
    ("IN_TRANSIT", S.EN_ROUTE),
    ("in transit", S.EN_ROUTE),
    ("AT_DROPOFF", S.PENDING_DELIVERY_CONFIRMATION),
    ("COMPLETED", S.COMPLETED),
    ("DELIVERED", S.COMPLETED),
    ("EXCEPTION", S.ERROR),
    ("CANCELLED", S.AWAITING_STATUS),
])
def test_known_codes(code, expected):
    assert map_external_status(code) is expected


@pytest.mark.parametrize("code", [None, "", "   ", "LOST_IN_SPACE"])
def test_unknown_codes_fall_back_to_default(code):
    assert map_external_status(code) is DEFAULT_STATUS
    assert DEFAULT_STATUS is S.AWAITING_STATUS


def test_normalize_status_code():
    assert normalize_status_code("  pending-delivery ") == "PENDING_DELIVERY"
    assert is_known_status("pending delivery")
    assert not is_known_status(None)


def test_every_table_entry_is_already_normalized():
    for code in EXTERNAL_STATUS_MAP:
        assert normalize_status_code(code) == code


def test_transition_table():
    assert can_transition(S.IDLE, S.EN_ROUTE)
    assert can_transition(S.EN_ROUTE, S.PENDING_DELIVERY_CONFIRMATION)
    assert can_transition(S.EN_ROUTE, S.IDLE)
    assert can_transition(S.PENDING_DELIVERY_CONFIRMATION, S.COMPLETED)
    assert can_transition(S.AWAITING_STATUS, S.ERROR)
    assert not can_transition(S.IDLE, S.COMPLETED)
    assert not can_transition(S.COMPLETED, S.IDLE)
    assert not can_transition(S.ERROR, S.EN_ROUTE)


def test_terminal_statuses():
    assert is_terminal(S.COMPLETED)
    assert is_terminal(S.ERROR)
    assert not is_terminal(S.PENDING_DELIVERY_CONFIRMATION)
