"""
approval_services.gateway -- Internal operation set of the approval engine.

Responsibility:
    The single entry point collaborators call: submit, approve, reject,
    queue listing and policy administration.  Each mutating operation runs
    in its own transaction, retried a bounded number of times when it
    loses a concurrent race.  Policy reads for matching and queue
    annotation are served from a cache with bounded staleness.

Architecture position:
    Services -- orchestration over kernel services, selectors and config.
    The only place where kernel services are constructed and composed.

Invariants enforced:
    - One transaction per attempt: a failed attempt rolls back completely,
      so a rejected mutation leaves persisted state unchanged.
    - Only retryable errors (``ConflictError`` proper) are retried, at most
      ``max_conflict_retries`` attempts in total.
    - Policy cache staleness never affects in-flight requests: they carry
      their own requirement snapshot.
    - Policy mutations invalidate the cache once committed.

Failure modes:
    - Every kernel error propagates to the caller unchanged, after the
      retry budget for ConflictError is spent.

Usage:
    from approval_services import ApprovalGateway

    gateway = ApprovalGateway(get_session_factory(), config=get_active_config())
    request = gateway.submit_approval(action, requester_context)
    gateway.approve(request.request_id, manager_context)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from approval_config import get_active_config
from approval_config.bridges import (
    build_default_policy,
    build_seed_drafts,
    build_urgency_rules,
)
from approval_config.schema import ApprovalConfigurationSet
from approval_engines.authorization import can_approve
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalRequest,
    AuditSink,
    AuthorizationContext,
    PolicyDraft,
    SubmittedAction,
    UrgencyRules,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.queue import QueueEntry, QueueFilter, QueueSummary, SortMode
from approval_kernel.exceptions import ConflictError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approval_service import REQUEST_ENTITY, ApprovalService
from approval_kernel.services.auditor_service import AuditorService, AuditTrace
from approval_kernel.services.policy_service import PolicyService

logger = get_logger("services.gateway")

T = TypeVar("T")


@dataclass(frozen=True)
class _Services:
    """Kernel services bound to one transaction."""

    session: Session
    audit: AuditSink
    auditor: AuditorService
    policies: PolicyService
    approvals: ApprovalService
    selector: ApprovalSelector


class ApprovalGateway:
    """Transactional facade over the approval kernel.

    Contract:
        Receives a session factory and a validated configuration set.
        Every public method opens its own ``session_scope``; callers never
        see a session.

    Non-goals:
        - Does NOT authenticate actors; the ``AuthorizationContext`` is
          trusted input from the identity provider.
        - Does NOT execute the approved action.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ApprovalConfigurationSet | None = None,
        clock: Clock | None = None,
        audit_sink_factory: Callable[[Session], AuditSink] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._audit_sink_factory = audit_sink_factory
        self._monotonic = monotonic

        self._default_policy = build_default_policy(self._config)
        self._default_rules = build_urgency_rules(self._config)
        self._max_attempts = self._config.engine.max_conflict_retries
        self._cache_ttl = self._config.engine.policy_cache_ttl_seconds

        self._cache_lock = threading.Lock()
        self._policy_cache: tuple[ApprovalPolicy, ...] | None = None
        self._policy_cache_loaded_at = 0.0

    @property
    def config(self) -> ApprovalConfigurationSet:
        return self._config

    @property
    def default_policy(self) -> ApprovalPolicy:
        return self._default_policy

    @property
    def default_urgency_rules(self) -> UrgencyRules:
        return self._default_rules

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _services(self, session: Session) -> _Services:
        auditor = AuditorService(session, self._clock)
        audit = self._audit_sink_factory(session) if self._audit_sink_factory else auditor
        roles = self._config.roles
        return _Services(
            session=session,
            audit=audit,
            auditor=auditor,
            policies=PolicyService(
                session,
                audit,
                clock=self._clock,
                admin_roles=roles.policy_admin_roles,
                platform_roles=roles.platform_roles,
            ),
            approvals=ApprovalService(
                session,
                audit,
                clock=self._clock,
                default_policy=self._default_policy,
                platform_roles=roles.platform_roles,
                requester_may_approve=self._config.engine.requester_may_approve,
            ),
            selector=ApprovalSelector(session),
        )

    def _run(self, operation: str, work: Callable[[_Services], T]) -> T:
        """Run ``work`` in a fresh transaction, retrying lost races."""
        attempt = 1
        while True:
            try:
                with session_scope(self._session_factory) as session:
                    return work(self._services(session))
            except ConflictError as exc:
                if not exc.retryable or attempt >= self._max_attempts:
                    logger.warning(
                        "conflict_retries_exhausted" if exc.retryable else "conflict_not_retryable",
                        extra={"operation": operation, "attempt": attempt, "error_code": exc.code},
                    )
                    raise
                logger.info(
                    "conflict_retry",
                    extra={"operation": operation, "attempt": attempt, "error_code": exc.code},
                )
                attempt += 1

    @staticmethod
    def _bind(context: AuthorizationContext | None = None, **fields: Any):
        return LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=context.actor_id if context is not None else None,
            scope_id=context.scope_id if context is not None else None,
            **{k: str(v) for k, v in fields.items() if v is not None},
        )

    # ------------------------------------------------------------------
    # Policy cache
    # ------------------------------------------------------------------

    def _cached_policies(self, session: Session) -> tuple[ApprovalPolicy, ...]:
        with self._cache_lock:
            fresh = (
                self._policy_cache is not None
                and self._monotonic() - self._policy_cache_loaded_at < self._cache_ttl
            )
            if fresh:
                return self._policy_cache
        policies = tuple(ApprovalSelector(session).policies())
        with self._cache_lock:
            self._policy_cache = policies
            self._policy_cache_loaded_at = self._monotonic()
        logger.debug("policy_cache_refreshed", extra={"policy_count": len(policies)})
        return policies

    def invalidate_policy_cache(self) -> None:
        with self._cache_lock:
            self._policy_cache = None
        logger.debug("policy_cache_invalidated")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit_approval(
        self,
        action: SubmittedAction,
        context: AuthorizationContext,
    ) -> ApprovalRequest:
        """Create a pending request governed by the matching policy."""
        with self._bind(context):
            return self._run(
                "submit_approval",
                lambda s: s.approvals.submit(action, context, self._cached_policies(s.session)),
            )

    def approve(self, request_id: UUID, context: AuthorizationContext) -> ApprovalRequest:
        with self._bind(context, request_id=request_id):
            return self._run(
                "approve",
                lambda s: s.approvals.approve(request_id, context),
            )

    def reject(
        self,
        request_id: UUID,
        context: AuthorizationContext,
        reason: str,
    ) -> ApprovalRequest:
        with self._bind(context, request_id=request_id):
            return self._run(
                "reject",
                lambda s: s.approvals.reject(request_id, context, reason),
            )

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        with session_scope(self._session_factory) as session:
            return self._services(session).approvals.get_request(request_id)

    def request_history(self, request_id: UUID) -> AuditTrace:
        """Audit trail of a request in sequence order."""
        with session_scope(self._session_factory) as session:
            services = self._services(session)
            services.approvals.get_request(request_id)
            return services.auditor.get_trace(REQUEST_ENTITY, request_id)

    def can_decide(self, request_id: UUID, context: AuthorizationContext) -> bool:
        """Whether ``context`` may currently approve or reject the request."""
        request = self.get_request(request_id)
        return can_approve(
            context,
            request,
            platform_roles=self._config.roles.platform_roles,
            requester_may_approve=self._config.engine.requester_may_approve,
        )

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def list_requests(
        self,
        queue_filter: QueueFilter | None = None,
        sort: SortMode | str = SortMode.URGENT,
        rules: UrgencyRules | None = None,
        now: datetime | None = None,
    ) -> list[QueueEntry]:
        """Filtered, ordered, urgency-annotated queue for one viewer."""
        with session_scope(self._session_factory) as session:
            selector = ApprovalSelector(session)
            return selector.queue(
                queue_filter or QueueFilter(),
                sort,
                rules or self._default_rules,
                now or self._clock.now(),
                policies=self._cached_policies(session),
            )

    def queue_summary(
        self,
        rules: UrgencyRules | None = None,
        scope_id: str | None = None,
        now: datetime | None = None,
    ) -> QueueSummary:
        with session_scope(self._session_factory) as session:
            return ApprovalSelector(session).summary(
                rules or self._default_rules,
                now or self._clock.now(),
                scope_id=scope_id,
                policies=self._cached_policies(session),
            )

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(self, actor: AuthorizationContext, draft: PolicyDraft) -> ApprovalPolicy:
        with self._bind(actor):
            policy = self._run(
                "create_policy",
                lambda s: s.policies.create_policy(actor, draft),
            )
        self.invalidate_policy_cache()
        return policy

    def update_policy(
        self,
        actor: AuthorizationContext,
        policy_id: UUID,
        patch: Mapping[str, Any],
    ) -> ApprovalPolicy:
        with self._bind(actor, policy_id=policy_id):
            policy = self._run(
                "update_policy",
                lambda s: s.policies.update_policy(actor, policy_id, patch),
            )
        self.invalidate_policy_cache()
        return policy

    def delete_policy(self, actor: AuthorizationContext, policy_id: UUID) -> None:
        with self._bind(actor, policy_id=policy_id):
            self._run(
                "delete_policy",
                lambda s: s.policies.delete_policy(actor, policy_id),
            )
        self.invalidate_policy_cache()

    def get_policy(self, policy_id: UUID) -> ApprovalPolicy:
        with session_scope(self._session_factory) as session:
            return self._services(session).policies.get_policy(policy_id)

    def list_policies(
        self,
        scope_id: str | None = None,
        include_inactive: bool = True,
    ) -> list[ApprovalPolicy]:
        with session_scope(self._session_factory) as session:
            return self._services(session).policies.list_policies(
                scope_id=scope_id, include_inactive=include_inactive,
            )

    def seed_policies(self) -> list[ApprovalPolicy]:
        """Install configured seed policies that are not stored yet.

        Returns the policies created by this call.
        """

        def work(s: _Services) -> list[ApprovalPolicy]:
            existing = {p.policy_id for p in s.selector.policies()}
            created = []
            for policy_id, draft in build_seed_drafts(self._config):
                if policy_id not in existing:
                    created.append(s.policies.seed_policy(draft, policy_id=policy_id))
            return created

        created = self._run("seed_policies", work)
        self.invalidate_policy_cache()
        logger.info("approval_policies_seeded", extra={"created": len(created)})
        return created

