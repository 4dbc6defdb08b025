"""
Tests for the pure policy matching engine.

Tests cover:
- policy_applies: activity, action-type coverage, scope, amount threshold
- rank_candidates: strictness ordering and currency mismatch detection
- match_policy: default fallback, determinism under input permutation
"""

from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.matcher import match_policy, policy_applies, rank_candidates
from approval_kernel.domain.approval import DEFAULT_POLICY, make_default_policy
from approval_kernel.exceptions import CurrencyMismatchError
from tests.factories import make_policy, refund_action


def _id(n: int) -> UUID:
    return UUID(int=n)


# =========================================================================
# policy_applies
# =========================================================================


class TestPolicyApplies:
    def test_threshold_at_or_below_amount_applies(self):
        policy = make_policy(threshold_cents=25000)
        assert policy_applies(policy, refund_action("250"))
        assert policy_applies(policy, refund_action("300"))

    def test_threshold_above_amount_does_not_apply(self):
        policy = make_policy(threshold_cents=25000)
        assert not policy_applies(policy, refund_action("249.99"))

    def test_no_threshold_applies_to_any_amount(self):
        assert policy_applies(make_policy(), refund_action("0"))

    def test_inactive_never_applies(self):
        assert not policy_applies(make_policy(is_active=False), refund_action())

    def test_uncovered_action_type(self):
        policy = make_policy(applies_to=frozenset({"payout"}))
        assert not policy_applies(policy, refund_action())

    def test_scoped_policy_only_in_its_scope(self):
        policy = make_policy(scope_id="park-1")
        assert policy_applies(policy, refund_action(scope_id="park-1"))
        assert not policy_applies(policy, refund_action(scope_id="park-2"))
        assert not policy_applies(policy, refund_action())

    def test_global_policy_applies_in_any_scope(self):
        assert policy_applies(make_policy(), refund_action(scope_id="park-9"))


# =========================================================================
# match_policy
# =========================================================================


class TestMatchPolicy:
    def test_large_refund_matches_threshold_policy(self):
        large = make_policy("Large refunds", threshold_cents=25000, approvers_needed=2)
        assert match_policy(refund_action("300"), [large]) is large

    def test_small_refund_falls_back_to_default(self):
        large = make_policy("Large refunds", threshold_cents=25000, approvers_needed=2)
        result = match_policy(refund_action("200"), [large])
        assert result is DEFAULT_POLICY
        assert result.approvers_needed == 1

    def test_uncovered_type_falls_back_to_default(self):
        large = make_policy("Large refunds", threshold_cents=25000, approvers_needed=2)
        payout = refund_action("1000", action_type="payout")
        assert match_policy(payout, [large]) is DEFAULT_POLICY

    def test_empty_policy_set_returns_default(self):
        assert match_policy(refund_action(), []) is DEFAULT_POLICY

    def test_custom_default(self):
        default = make_default_policy(frozenset({"finance"}))
        assert match_policy(refund_action(), [], default=default) is default

    def test_highest_threshold_wins(self):
        low = make_policy("low", threshold_cents=10000, approvers_needed=3)
        high = make_policy("high", threshold_cents=25000, approvers_needed=2)
        assert match_policy(refund_action("300"), [low, high]) is high

    def test_threshold_beats_unthresholded(self):
        blanket = make_policy("blanket", approvers_needed=3)
        zero = make_policy("zero", threshold_cents=0, approvers_needed=1)
        assert match_policy(refund_action("1"), [blanket, zero]) is zero

    def test_equal_threshold_more_approvers_wins(self):
        two = make_policy("two", threshold_cents=25000, approvers_needed=2)
        three = make_policy("three", threshold_cents=25000, approvers_needed=3)
        assert match_policy(refund_action("300"), [two, three]) is three

    def test_scoped_beats_global_on_tie(self):
        glob = make_policy("global", threshold_cents=25000, approvers_needed=2)
        local = make_policy(
            "local", threshold_cents=25000, approvers_needed=2, scope_id="park-1",
        )
        action = refund_action("300", scope_id="park-1")
        assert match_policy(action, [glob, local]) is local

    def test_policy_id_is_final_tiebreak(self):
        a = make_policy("a", threshold_cents=100, policy_id=_id(2))
        b = make_policy("b", threshold_cents=100, policy_id=_id(1))
        assert match_policy(refund_action(), [a, b]) is b
        assert match_policy(refund_action(), [b, a]) is b

    def test_inactive_strict_policy_ignored(self):
        strict = make_policy("strict", threshold_cents=25000, approvers_needed=3, is_active=False)
        loose = make_policy("loose", approvers_needed=1)
        assert match_policy(refund_action("300"), [strict, loose]) is loose

    def test_emits_engine_trace(self, captured_logs):
        match_policy(refund_action(), [])
        traces = [r for r in captured_logs() if r["message"] == "APPROVAL_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "policy_matcher"
        assert len(traces[0]["input_fingerprint"]) == 16


# =========================================================================
# Currency
# =========================================================================


class TestCurrencyMismatch:
    def test_thresholded_policy_in_other_currency_raises(self):
        cad = make_policy("cad", threshold_cents=25000, currency="CAD")
        with pytest.raises(CurrencyMismatchError) as exc_info:
            match_policy(refund_action("300"), [cad])
        assert exc_info.value.action_currency == "USD"
        assert exc_info.value.policy_currency == "CAD"

    def test_threshold_above_amount_still_raises(self):
        cad = make_policy("cad", threshold_cents=50000, currency="CAD")
        with pytest.raises(CurrencyMismatchError):
            match_policy(refund_action("300"), [cad])

    def test_unthresholded_policy_ignores_currency(self):
        cad = make_policy("cad", currency="CAD")
        assert match_policy(refund_action(), [cad]) is cad

    def test_uncovering_policy_never_raises(self):
        cad = make_policy(
            "cad payouts", applies_to=frozenset({"payout"}), threshold_cents=1, currency="CAD",
        )
        assert match_policy(refund_action(), [cad]) is DEFAULT_POLICY

    def test_rank_candidates_returns_all_applicable_in_order(self):
        blanket = make_policy("blanket")
        mid = make_policy("mid", threshold_cents=10000)
        high = make_policy("high", threshold_cents=25000)
        ranked = rank_candidates(refund_action("300"), [blanket, mid, high])
        assert [p.name for p in ranked] == ["high", "mid", "blanket"]


# =========================================================================
# Determinism
# =========================================================================


policy_strategy = st.builds(
    make_policy,
    name=st.sampled_from(["a", "b", "c"]),
    applies_to=st.sampled_from([frozenset({"refund"}), frozenset({"payout"}), frozenset({"refund", "payout"})]),
    approvers_needed=st.integers(min_value=1, max_value=4),
    threshold_cents=st.one_of(st.none(), st.integers(min_value=0, max_value=100_000)),
    is_active=st.booleans(),
    scope_id=st.sampled_from([None, "park-1", "park-2"]),
    policy_id=st.integers(min_value=1, max_value=10_000).map(_id),
)


class TestMatcherDeterminism:
    @given(
        policies=st.lists(policy_strategy, max_size=8, unique_by=lambda p: p.policy_id),
        amount=st.decimals(min_value=0, max_value=2000, places=2),
        scope=st.sampled_from([None, "park-1", "park-2"]),
        data=st.data(),
    )
    @settings(max_examples=100, deadline=None)
    def test_order_of_policies_never_changes_result(self, policies, amount, scope, data):
        action = refund_action(str(amount), scope_id=scope)
        shuffled = data.draw(st.permutations(policies))
        assert match_policy(action, policies) == match_policy(action, shuffled)

    @given(
        policies=st.lists(policy_strategy, max_size=8, unique_by=lambda p: p.policy_id),
        amount=st.decimals(min_value=0, max_value=2000, places=2),
    )
    @settings(max_examples=100, deadline=None)
    def test_result_is_default_or_applicable(self, policies, amount):
        action = refund_action(str(amount))
        result = match_policy(action, policies)
        assert result is DEFAULT_POLICY or policy_applies(result, action)
        if result is not DEFAULT_POLICY:
            for policy in policies:
                if policy_applies(policy, action):
                    threshold = -1 if policy.threshold_cents is None else policy.threshold_cents
                    chosen = -1 if result.threshold_cents is None else result.threshold_cents
                    assert chosen >= threshold
