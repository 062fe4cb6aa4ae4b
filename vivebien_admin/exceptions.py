"""
Exception Classes - Strongly typed exception hierarchy.

Every DashboardError carries the HTTP status it is reported with.
"""

from collections.abc import Iterable


class DashboardError(Exception):
    """Base exception for all dashboard errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DatabaseNotConfiguredError(DashboardError):
    """Raised when a write is attempted without a DATABASE_URL."""

    status_code = 500

    def __init__(self) -> None:
        super().__init__("Database not configured")


class DatabaseError(DashboardError):
    """Raised when a database operation fails unexpectedly."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationFailedError(DashboardError):
    """Raised when required request fields are missing or malformed."""

    status_code = 400

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class InvalidRoutineStatusError(DashboardError):
    """Raised when a routine status is outside the allowed set."""

    status_code = 400

    def __init__(self, status: str, allowed: Iterable[str]) -> None:
        self.status = status
        self.allowed = list(allowed)
        super().__init__(f"Invalid status. Must be one of: {', '.join(self.allowed)}")


class InvalidSubscriptionActionError(DashboardError):
    """Raised when a subscription action is not recognised."""

    status_code = 400

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__("Invalid action")


class BillingAccountNotFoundError(DashboardError):
    """Raised when a user has no billing account."""

    status_code = 404

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("No billing account found")


class RoutineNotFoundError(DashboardError):
    """Raised when a routine doesn't exist."""

    status_code = 404

    def __init__(self, routine_id: str) -> None:
        self.routine_id = routine_id
        super().__init__("Routine not found")


class UserNotFoundError(DashboardError):
    """Raised when a user doesn't exist or is already soft-deleted."""

    status_code = 404

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class SubscriptionConflictError(DashboardError):
    """Raised when strict transitions are on and the action doesn't fit the state."""

    status_code = 409

    def __init__(self, action: str, current_status: str) -> None:
        self.action = action
        self.current_status = current_status
        super().__init__(f"Cannot {action} a subscription that is {current_status}")


class UserIdRequiredError(DashboardError):
    """Raised when a lookup is made without a user id."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("User ID required")
