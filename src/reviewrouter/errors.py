"""Exception hierarchy for ReviewRouter.

Routing outcomes that are not failures (no rule matched, duplicate event)
are returned as values. The exceptions below cover conditions the caller
must handle explicitly.
"""

from __future__ import annotations

from collections.abc import Sequence


class ReviewRouterError(Exception):
    """Base class for all ReviewRouter errors."""


class NoEligibleReviewer(ReviewRouterError):
    """Raised when a directive resolves to an empty reviewer pool.

    Attributes:
        organization_id: Organization being routed.
        rule_id: Winning rule, or None when the fallback produced the directive.
        reason: Short machine-readable reason.
    """

    def __init__(
        self,
        organization_id: str,
        rule_id: str | None = None,
        reason: str = "empty_pool",
    ) -> None:
        self.organization_id = organization_id
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(
            f"No eligible reviewer for organization {organization_id} "
            f"(rule={rule_id or 'fallback'}, reason={reason})"
        )


class StoreUnavailable(ReviewRouterError):
    """Raised when the persistent store times out or cannot be reached.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, operation: str, detail: str | None = None) -> None:
        self.operation = operation
        self.detail = detail
        message = f"Store unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotificationFailed(ReviewRouterError):
    """Raised by notifiers when a message could not be delivered.

    Attributes:
        channel: Notifier channel name (slack, webhook, ...).
        recipient: Recipient identifier the delivery was addressed to.
        delivered: Channels that did deliver when several were tried.
    """

    def __init__(
        self,
        channel: str,
        recipient: str,
        detail: str,
        delivered: tuple[str, ...] = (),
    ) -> None:
        self.channel = channel
        self.recipient = recipient
        self.detail = detail
        self.delivered = delivered
        super().__init__(f"{channel} notification to {recipient} failed: {detail}")


class NotFoundError(ReviewRouterError):
    """Raised when a referenced record does not exist in the organization."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class RuleValidationError(ReviewRouterError):
    """Raised when a rule mutation is rejected."""


class DuplicatePriorityError(RuleValidationError):
    """Raised when a rule would share its priority with another rule."""

    def __init__(self, organization_id: str, priority: int) -> None:
        self.organization_id = organization_id
        self.priority = priority
        super().__init__(
            f"Priority {priority} is already used in organization {organization_id}"
        )


class InvalidReorderError(RuleValidationError):
    """Raised when a reorder request does not cover exactly the org's rules."""

    def __init__(
        self,
        organization_id: str,
        missing: Sequence[str] = (),
        unknown: Sequence[str] = (),
        duplicated: Sequence[str] = (),
    ) -> None:
        self.organization_id = organization_id
        self.missing = list(missing)
        self.unknown = list(unknown)
        self.duplicated = list(duplicated)
        parts = []
        if missing:
            parts.append(f"missing={sorted(missing)}")
        if unknown:
            parts.append(f"unknown={sorted(unknown)}")
        if duplicated:
            parts.append(f"duplicated={sorted(duplicated)}")
        super().__init__(
            f"Reorder for organization {organization_id} rejected: " + ", ".join(parts)
        )

