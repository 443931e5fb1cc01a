import pytest

from order_workflow.domain import OrderStatus, Role
from order_workflow.errors import InvalidTransitionError, UnauthorizedError
from order_workflow.order_state import (
    CUSTOMER_TRANSITIONS,
    STAFF_TRANSITIONS,
    is_staff_only_transition,
    is_terminal,
    is_valid_transition,
    legal_next_states,
    status_color,
    status_description,
    validate_transition,
)

S = OrderStatus
TABLES = {
    Role.CUSTOMER: CUSTOMER_TRANSITIONS,
    Role.ADMIN: STAFF_TRANSITIONS,
    Role.MANAGER: STAFF_TRANSITIONS,
    Role.EMPLOYEE: {},
}


def test_staff_table():
    assert legal_next_states(S.PENDING_APPROVAL, Role.ADMIN) == {S.QUOTED, S.REJECTED, S.CANCELLED}
    assert legal_next_states(S.QUOTED, Role.MANAGER) == {S.APPROVED, S.REJECTED, S.CANCELLED}
    assert legal_next_states(S.CANCELLED, Role.ADMIN) == {S.PENDING_APPROVAL}
    assert legal_next_states(S.COMPLETED, Role.ADMIN) == frozenset()


def test_customer_table():
    assert legal_next_states(S.QUOTED, Role.CUSTOMER) == {S.REJECTED}
    assert legal_next_states(S.DELIVERED, Role.CUSTOMER) == {S.COMPLETED}
    assert legal_next_states(S.PENDING_APPROVAL, Role.CUSTOMER) == frozenset()


@pytest.mark.parametrize("role", list(TABLES))
@pytest.mark.parametrize("current", list(S))
def test_pairs_outside_table_are_empty_and_rejected(role, current):
    allowed = TABLES[role].get(current, frozenset())
    assert legal_next_states(current, role) == allowed
    for target in S:
        if target in allowed:
            validate_transition(current, target, role)
        else:
            with pytest.raises(InvalidTransitionError) as exc:
                validate_transition(current, target, role)
            assert exc.value.current_status == current.value
            assert set(exc.value.allowed) == {s.value for s in allowed}


def test_string_inputs_and_role_casing():
    assert is_valid_transition("quoted", "approved", "Admin")
    assert is_valid_transition("quoted", "approved", "ADMIN")
    assert not is_valid_transition("quoted", "approved", "user")


def test_unknown_role_is_unauthorized():
    with pytest.raises(UnauthorizedError):
        legal_next_states(S.QUOTED, "superuser")


def test_staff_only_transition():
    assert is_staff_only_transition(S.PENDING_APPROVAL, S.QUOTED)
    assert not is_staff_only_transition(S.QUOTED, S.REJECTED)
    assert not is_staff_only_transition(S.PENDING_APPROVAL, S.DELIVERED)


def test_terminal_and_lookups():
    assert is_terminal(S.COMPLETED) and is_terminal(S.CANCELLED)
    assert not is_terminal(S.DELIVERED)
    assert status_description(S.QUOTED).startswith("Quoted")
    assert status_description("mystery") == "mystery"
    assert status_color("mystery") == "#808080"
