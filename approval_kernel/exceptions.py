"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers render these errors as actionable messages ("You already approved
this request") and decide whether to retry.  Parsing message strings for
that is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way to handle errors:
    try:
        gateway.approve(request_id, context)
    except UnauthorizedError as e:
        api_response(code=e.code, reason=e.reason)
    except TerminalStateError as e:
        api_response(code=e.code, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalEngineError:

    ApprovalEngineError (base)
    |
    +-- ValidationError
    |   +-- InvalidActionError
    |   +-- InvalidPolicyError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- PolicyNotFoundError
    |
    +-- UnauthorizedError
    |
    +-- TerminalStateError
    |
    +-- InvalidTransitionError
    |
    +-- ConflictError
    |   +-- PolicyInUseError
    |
    +-- CurrencyMismatchError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                    | When Raised
----------------|-------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR        | Empty reject reason, malformed input
                | INVALID_ACTION          | Missing action type, negative amount
                | INVALID_POLICY          | Policy violates its invariants
----------------|-------------------------|-----------------------------------------
Lookup          | REQUEST_NOT_FOUND       | Unknown request id
                | POLICY_NOT_FOUND        | Unknown policy id
----------------|-------------------------|-----------------------------------------
Authorization   | UNAUTHORIZED            | Wrong role, duplicate approver, scope
----------------|-------------------------|-----------------------------------------
Lifecycle       | TERMINAL_STATE          | Mutating an approved/rejected request
                | INVALID_TRANSITION      | Edge not in REQUEST_TRANSITIONS
----------------|-------------------------|-----------------------------------------
Concurrency     | CONFLICT                | Lost a concurrent read-modify-write
                | POLICY_IN_USE           | Deleting a policy with open requests
----------------|-------------------------|-----------------------------------------
Currency        | CURRENCY_MISMATCH       | Threshold currency != action currency
----------------|-------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION  | Modifying an append-only record
Audit           | AUDIT_CHAIN_BROKEN      | Hash chain validation failed
Config          | CONFIGURATION_ERROR     | Invalid YAML configuration set

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConflictError is the ONLY retryable error.  ApprovalGateway retries it a
   bounded number of times; everything else surfaces immediately.

2. PolicyInUseError is a ConflictError by category (the policy is held by
   open requests) but is NOT a lost race, so it sets ``retryable = False``.
"""


class ApprovalEngineError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_ENGINE_ERROR"
    retryable: bool = False


# Validation exceptions


class ValidationError(ApprovalEngineError):
    """Malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidActionError(ValidationError):
    """Submitted action is missing a type or carries a negative amount."""

    code: str = "INVALID_ACTION"


class InvalidPolicyError(ValidationError):
    """Policy draft violates a policy invariant."""

    code: str = "INVALID_POLICY"


# Lookup exceptions


class NotFoundError(ApprovalEngineError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Approval request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class PolicyNotFoundError(NotFoundError):
    """Approval policy with given ID was not found."""

    code: str = "POLICY_NOT_FOUND"

    def __init__(self, policy_id: str):
        self.policy_id = policy_id
        super().__init__(f"Approval policy not found: {policy_id}")


# Authorization


class UnauthorizedError(ApprovalEngineError):
    """
    Actor may not perform this operation.

    ``reason`` is one of the AuthorizationDenial values (e.g.
    ``already_decided``, ``role_not_eligible``, ``out_of_scope``) so the
    caller can render a specific message.
    """

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, reason: str, request_id: str | None = None):
        self.actor_id = actor_id
        self.reason = reason
        self.request_id = request_id
        target = f" on request {request_id}" if request_id else ""
        super().__init__(f"Actor {actor_id} is not authorized{target}: {reason}")


# Lifecycle


class TerminalStateError(ApprovalEngineError):
    """Request already resolved; no further decisions are accepted."""

    code: str = "TERMINAL_STATE"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is already {status}"
        )


class InvalidTransitionError(ApprovalEngineError):
    """Status change not permitted by the request state machine."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid approval transition: {from_status} -> {to_status}"
        )


# Concurrency


class ConflictError(ApprovalEngineError):
    """Concurrent modification detected; re-read and retry."""

    code: str = "CONFLICT"
    retryable: bool = True

    def __init__(self, entity_type: str, entity_id: str, detail: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(
            f"Conflict on {entity_type} {entity_id}: "
            f"{detail or 'entity was modified by another transaction'}"
        )


class PolicyInUseError(ConflictError):
    """Policy is still referenced by open approval requests."""

    code: str = "POLICY_IN_USE"
    retryable: bool = False

    def __init__(self, policy_id: str, open_request_count: int):
        self.open_request_count = open_request_count
        super().__init__(
            "ApprovalPolicy",
            policy_id,
            f"{open_request_count} open request(s) still reference this policy",
        )


# Currency


class CurrencyMismatchError(ApprovalEngineError):
    """Policy threshold currency differs from the action currency."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, action_currency: str, policy_currency: str, policy_id: str):
        self.action_currency = action_currency
        self.policy_currency = policy_currency
        self.policy_id = policy_id
        super().__init__(
            f"Action currency {action_currency} does not match threshold "
            f"currency {policy_currency} of policy {policy_id}"
        )


# Immutability


class ImmutabilityViolationError(ApprovalEngineError):
    """Attempted modification of an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditChainBrokenError(ApprovalEngineError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Configuration


class ConfigurationError(ApprovalEngineError):
    """Configuration set failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Invalid approval configuration: {len(errors)} error(s): "
            + "; ".join(errors)
        )
