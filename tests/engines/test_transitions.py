"""
Tests for request status transitions.

Tests cover:
- status_for_approval_count for one-, two- and three-approver policies
- next_status_after_approval / next_status_after_rejection edge validation
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from approval_engines.transitions import (
    is_valid_transition,
    next_status_after_approval,
    next_status_after_rejection,
    status_for_approval_count,
    validate_transition,
)
from approval_kernel.domain.approval import RequestStatus
from approval_kernel.exceptions import InvalidTransitionError

P = RequestStatus.PENDING
P2 = RequestStatus.PENDING_SECOND
A = RequestStatus.APPROVED
R = RequestStatus.REJECTED


class TestStatusForApprovalCount:
    @pytest.mark.parametrize(
        "count, required, expected",
        [
            (0, 1, P),
            (1, 1, A),
            (0, 2, P),
            (1, 2, P2),
            (2, 2, A),
            (1, 3, P2),
            (2, 3, P2),
            (3, 3, A),
        ],
    )
    def test_table(self, count, required, expected):
        assert status_for_approval_count(count, required) == expected

    @given(required=st.integers(min_value=1, max_value=10), data=st.data())
    def test_pending_second_only_for_multi_approver(self, required, data):
        count = data.draw(st.integers(min_value=0, max_value=required))
        status = status_for_approval_count(count, required)
        if status == P2:
            assert required >= 2
            assert 1 <= count < required


class TestNextStatus:
    def test_single_approver_approves_immediately(self):
        assert next_status_after_approval(P, 1, 1) == A

    def test_first_of_two(self):
        assert next_status_after_approval(P, 1, 2) == P2

    def test_second_of_two(self):
        assert next_status_after_approval(P2, 2, 2) == A

    def test_second_of_three_stays_pending_second(self):
        assert next_status_after_approval(P2, 2, 3) == P2

    @pytest.mark.parametrize("terminal", [A, R])
    def test_approval_on_terminal_raises(self, terminal):
        with pytest.raises(InvalidTransitionError):
            next_status_after_approval(terminal, 3, 2)

    @pytest.mark.parametrize("status", [P, P2])
    def test_rejection_from_open(self, status):
        assert next_status_after_rejection(status) == R

    @pytest.mark.parametrize("terminal", [A, R])
    def test_rejection_on_terminal_raises(self, terminal):
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_status_after_rejection(terminal)
        assert exc_info.value.to_status == "rejected"

    def test_back_to_pending_invalid(self):
        assert not is_valid_transition(P2, P)
        with pytest.raises(InvalidTransitionError):
            validate_transition(P2, P)
