"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, batch jobs) map workflow errors onto user-facing
responses.  Matching on message text is fragile, so every error:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

Example:
    try:
        engine.decide(request_id, actor, ApprovalDecision.APPROVE)
    except InvalidTransitionError as e:
        return {"error": e.code, "request_id": e.request_id, "reason": e.reason}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- RequesterNotFoundError
    |   +-- ApproverNotFoundError
    |   +-- UnknownCategoryError
    |
    +-- ChainError
    |   +-- ChainResolutionError
    |   +-- InvalidChainError
    |
    +-- InvalidTransitionError
    +-- ForbiddenError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityViolationError
    +-- DirectoryIntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|------------------------------------
Not found     | REQUEST_NOT_FOUND          | Request id does not exist
              | REQUESTER_NOT_FOUND        | Requester cannot be resolved
              | APPROVER_NOT_FOUND         | Designated approver missing
              | UNKNOWN_CATEGORY           | No recipe for the request category
--------------|----------------------------|------------------------------------
Chain         | CHAIN_RESOLUTION_FAILURE   | Fallback recipe produced nobody
              | INVALID_CHAIN              | Chain handed to start() is malformed
--------------|----------------------------|------------------------------------
Workflow      | INVALID_TRANSITION         | Non-pending step, terminal request,
              |                            | or unauthorized actor
              | FORBIDDEN                  | Override by a non-privileged role
--------------|----------------------------|------------------------------------
Concurrency   | CONCURRENT_MODIFICATION    | Lost an optimistic version race
--------------|----------------------------|------------------------------------
Integrity     | IMMUTABILITY_VIOLATION     | UPDATE/DELETE of an audit entry
              | DIRECTORY_INTEGRITY        | Malformed organization snapshot

===============================================================================
PROPAGATION
===============================================================================

- NotFound and chain errors surface directly to the caller.
- InvalidTransition / Forbidden are user-facing rejections, not faults.
- ConcurrentModification is retried once by the caller
  (see ``approval_kernel.services.retry.retry_on_conflict``).
- Notification failures never become workflow errors.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ApprovalKernelError):
    """Base exception for unresolvable references."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Approval request with given id was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class RequesterNotFoundError(NotFoundError):
    """Requester identity cannot be resolved to a contact."""

    code: str = "REQUESTER_NOT_FOUND"

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Requester cannot be resolved: {identity!r}")


class ApproverNotFoundError(NotFoundError):
    """A designated approver is missing from the directory."""

    code: str = "APPROVER_NOT_FOUND"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No approver available for role: {role}")


class UnknownCategoryError(NotFoundError):
    """No chain recipe is registered for the request category."""

    code: str = "UNKNOWN_CATEGORY"

    def __init__(self, category: str, known: tuple[str, ...] = ()):
        self.category = category
        self.known = known
        super().__init__(
            f"No approval recipe for category {category!r} "
            f"(known: {', '.join(known) or 'none'})"
        )


# Chain construction exceptions


class ChainError(ApprovalKernelError):
    """Base exception for chain construction errors."""

    code: str = "CHAIN_ERROR"


class ChainResolutionError(ChainError):
    """
    Even the fallback recipe produced zero approvers.

    Chain construction is all-or-nothing: no partial chain is returned.
    """

    code: str = "CHAIN_RESOLUTION_FAILURE"

    def __init__(self, requester: str, category: str):
        self.requester = requester
        self.category = category
        super().__init__(
            f"Could not resolve any approver for {requester!r} "
            f"(category {category!r})"
        )


class InvalidChainError(ChainError):
    """A chain handed to the workflow violates a structural invariant."""

    code: str = "INVALID_CHAIN"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid approval chain: {reason}")


# Workflow exceptions


class InvalidTransitionError(ApprovalKernelError):
    """
    Decision or escalation not allowed in the request's current state.

    Raised for a non-pending step, a terminal request, or an actor who is
    not authorized for the current step.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Invalid transition on request {request_id}: {reason}")


class ForbiddenError(ApprovalKernelError):
    """Override attempted by an actor without a privileged role."""

    code: str = "FORBIDDEN"

    def __init__(self, request_id: str, actor_role: str):
        self.request_id = request_id
        self.actor_role = actor_role
        super().__init__(
            f"Role {actor_role!r} may not override request {request_id}"
        )


# Concurrency exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Another writer changed the request since it was loaded."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, request_id: str, expected_version: int):
        self.request_id = request_id
        self.expected_version = expected_version
        super().__init__(
            f"Request {request_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


# Integrity exceptions


class ImmutabilityViolationError(ApprovalKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id}: {reason}")


class DirectoryIntegrityError(ApprovalKernelError):
    """The organization snapshot cannot be indexed."""

    code: str = "DIRECTORY_INTEGRITY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Organization directory is inconsistent: {reason}")
