"""
Tests for queue annotation, filtering, ordering and summary counts.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from approval_engines.queue import annotate, build_queue, matches_filter, summarize
from approval_kernel.domain.approval import RequestStatus, UrgencyRules
from approval_kernel.domain.queue import QueueEntry, QueueFilter, SortMode
from tests.factories import T0, make_policy, make_request

NOW = T0 + timedelta(hours=1)

QUIET = UrgencyRules(
    pending_second_counts=False,
    age_threshold_hours=Decimal("0"),
    policy_threshold_counts=False,
)


def entry(request, urgent=False, policy=None) -> QueueEntry:
    return QueueEntry(request=request, policy=policy, urgent=urgent)


@pytest.fixture
def mixed():
    """Four requests, one per status, created an hour apart."""
    pending = make_request(RequestStatus.PENDING, created_at=T0 - timedelta(hours=3))
    second = make_request(RequestStatus.PENDING_SECOND, created_at=T0 - timedelta(hours=2))
    approved = make_request(RequestStatus.APPROVED, created_at=T0 - timedelta(hours=1))
    rejected = make_request(RequestStatus.REJECTED, created_at=T0)
    return pending, second, approved, rejected


class TestAnnotate:
    def test_attaches_current_policy_by_id(self):
        policy = make_policy("Renamed refunds", threshold_cents=25000)
        request = make_request(policy_id=policy.policy_id)
        [annotated] = annotate([request], {policy.policy_id: policy}, UrgencyRules(), NOW)
        assert annotated.policy is policy
        assert annotated.urgent

    def test_missing_policy_is_none(self):
        [annotated] = annotate([make_request(amount="1")], {}, QUIET, NOW)
        assert annotated.policy is None
        assert not annotated.urgent


class TestFilter:
    def test_open_status(self, mixed):
        pending, second, approved, _ = mixed
        f = QueueFilter(status="open")
        assert matches_filter(entry(pending), f)
        assert matches_filter(entry(second), f)
        assert not matches_filter(entry(approved), f)

    def test_specific_status(self, mixed):
        _, second, approved, _ = mixed
        f = QueueFilter(status="approved")
        assert matches_filter(entry(approved), f)
        assert not matches_filter(entry(second), f)

    def test_action_type(self):
        payout = make_request(action_type="payout")
        assert matches_filter(entry(payout), QueueFilter(action_type="payout"))
        assert not matches_filter(entry(payout), QueueFilter(action_type="refund"))

    def test_urgent_only(self):
        request = make_request()
        assert not matches_filter(entry(request, urgent=False), QueueFilter(urgent_only=True))
        assert matches_filter(entry(request, urgent=True), QueueFilter(urgent_only=True))

    def test_scope(self):
        request = make_request(scope_id="park-1")
        assert matches_filter(entry(request), QueueFilter(scope_id="park-1"))
        assert not matches_filter(entry(request), QueueFilter(scope_id="park-2"))

    @pytest.mark.parametrize(
        "query",
        ["CANCELLED", "clerk-1", "refund", "usd", "large refunds", "  Large  "],
    )
    def test_search_case_insensitive(self, query):
        assert matches_filter(entry(make_request()), QueueFilter(search_text=query))

    def test_search_by_request_id_prefix(self):
        request = make_request()
        prefix = str(request.request_id)[:8]
        assert matches_filter(entry(request), QueueFilter(search_text=prefix))

    def test_search_by_current_policy_name(self):
        policy = make_policy("Holiday refunds")
        request = make_request(policy_id=policy.policy_id)
        assert matches_filter(entry(request, policy=policy), QueueFilter(search_text="holiday"))

    def test_search_miss(self):
        assert not matches_filter(entry(make_request()), QueueFilter(search_text="zzz"))


class TestOrdering:
    def test_urgent_mode(self, mixed):
        pending, second, approved, rejected = mixed
        ordered = build_queue(
            [rejected, approved, pending, second],
            {},
            QueueFilter(),
            SortMode.URGENT,
            UrgencyRules(age_threshold_hours=Decimal("0"), policy_threshold_counts=False),
            NOW,
        )
        # pending_second is urgent; the rest follow status priority.
        assert [e.request for e in ordered] == [second, pending, approved, rejected]

    def test_urgent_mode_newest_within_priority(self):
        older = make_request(created_at=T0 - timedelta(hours=5))
        newer = make_request(created_at=T0)
        ordered = build_queue([older, newer], {}, QueueFilter(), SortMode.URGENT, QUIET, NOW)
        assert [e.request for e in ordered] == [newer, older]

    def test_newest(self, mixed):
        pending, second, approved, rejected = mixed
        ordered = build_queue(mixed, {}, QueueFilter(), SortMode.NEWEST, QUIET, NOW)
        assert [e.request for e in ordered] == [rejected, approved, second, pending]

    def test_oldest(self, mixed):
        pending, second, approved, rejected = mixed
        ordered = build_queue(mixed, {}, QueueFilter(), "oldest", QUIET, NOW)
        assert [e.request for e in ordered] == [pending, second, approved, rejected]

    def test_equal_timestamps_break_by_priority_then_id(self):
        a = make_request(RequestStatus.PENDING)
        b = make_request(RequestStatus.PENDING)
        c = make_request(RequestStatus.PENDING_SECOND)
        ordered = build_queue([a, b, c], {}, QueueFilter(), SortMode.NEWEST, QUIET, NOW)
        assert ordered[0].request is c
        assert [str(e.request.request_id) for e in ordered[1:]] == sorted(
            [str(a.request_id), str(b.request_id)]
        )

    def test_order_independent_of_input_order(self, mixed):
        forward = build_queue(mixed, {}, QueueFilter(), SortMode.URGENT, UrgencyRules(), NOW)
        backward = build_queue(
            list(reversed(mixed)), {}, QueueFilter(), SortMode.URGENT, UrgencyRules(), NOW,
        )
        assert forward == backward


class TestSummary:
    def test_counts(self, mixed):
        entries = annotate(mixed, {}, UrgencyRules(age_threshold_hours=Decimal("0")), NOW)
        summary = summarize(entries)
        assert summary.pending == 1
        assert summary.pending_second == 1
        assert summary.urgent == 1
        assert summary.total == 4
        assert summary.open == 2

    def test_empty(self):
        summary = summarize([])
        assert (summary.pending, summary.pending_second, summary.urgent, summary.total) == (0, 0, 0, 0)
