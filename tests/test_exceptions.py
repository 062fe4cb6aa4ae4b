"""
Tests for exception classes.

Covers status codes and the messages operators see.
"""

import pytest

from vivebien_admin.exceptions import (
    BillingAccountNotFoundError,
    DashboardError,
    DatabaseError,
    DatabaseNotConfiguredError,
    InvalidRoutineStatusError,
    InvalidSubscriptionActionError,
    RoutineNotFoundError,
    SubscriptionConflictError,
    UserIdRequiredError,
    UserNotFoundError,
    ValidationFailedError,
)


class TestDashboardError:
    """Tests for base DashboardError."""

    def test_is_exception(self):
        assert issubclass(DashboardError, Exception)

    def test_message_attribute(self):
        exc = DashboardError("boom")
        assert exc.message == "boom"
        assert str(exc) == "boom"
        assert exc.status_code == 500


class TestStatusCodes:
    """Every subclass reports with its own HTTP status."""

    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (DatabaseNotConfiguredError(), 500),
            (DatabaseError("connection reset"), 500),
            (ValidationFailedError(["userId"]), 400),
            (InvalidRoutineStatusError("archived", ["active"]), 400),
            (InvalidSubscriptionActionError("upgrade"), 400),
            (UserIdRequiredError(), 400),
            (BillingAccountNotFoundError("user-1"), 404),
            (RoutineNotFoundError("routine-1"), 404),
            (UserNotFoundError("user-1"), 404),
            (SubscriptionConflictError("pause", "cancelled"), 409),
        ],
    )
    def test_status_code(self, exc, status_code):
        assert isinstance(exc, DashboardError)
        assert exc.status_code == status_code


class TestMessages:
    """Messages are part of the HTTP contract."""

    def test_database_not_configured(self):
        assert DatabaseNotConfiguredError().message == "Database not configured"

    def test_missing_fields(self):
        exc = ValidationFailedError(["userId", "amount"])
        assert exc.fields == ["userId", "amount"]
        assert exc.message == "Missing required fields: userId, amount"

    def test_invalid_routine_status(self):
        exc = InvalidRoutineStatusError("archived", ("active", "paused", "completed"))
        assert exc.status == "archived"
        assert exc.message == "Invalid status. Must be one of: active, paused, completed"

    def test_invalid_action(self):
        exc = InvalidSubscriptionActionError("upgrade")
        assert exc.action == "upgrade"
        assert exc.message == "Invalid action"

    def test_no_billing_account(self):
        exc = BillingAccountNotFoundError("user-1")
        assert exc.user_id == "user-1"
        assert exc.message == "No billing account found"

    def test_routine_not_found(self):
        assert RoutineNotFoundError("routine-1").message == "Routine not found"

    def test_user_not_found_names_user(self):
        assert UserNotFoundError("user-9").message == "User user-9 not found"

    def test_conflict_names_current_status(self):
        exc = SubscriptionConflictError("pause", "cancelled")
        assert exc.current_status == "cancelled"
        assert "cancelled" in exc.message

    def test_user_id_required(self):
        assert UserIdRequiredError().message == "User ID required"
