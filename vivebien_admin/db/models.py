"""
Database Models - SQLAlchemy ORM models with strict typing.

The schema is owned by the messaging pipeline; these models map the existing
tables. No model carries a schema name, DB_SCHEMA is applied per engine.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vivebien_admin.models.api import RoutineStatus, SubscriptionStatus, UserStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a string UUID primary key."""
    return str(uuid4())


def _uuid_pk() -> Mapped[str]:
    return mapped_column(PG_UUID(as_uuid=False), primary_key=True, default=new_id)


def _uuid_fk(nullable: bool = False) -> Mapped[Any]:
    return mapped_column(PG_UUID(as_uuid=False), nullable=nullable, index=True)


class User(Base):
    """
    ORM model for users table.

    Created by upstream intake; the dashboard only soft-deletes.
    """

    __tablename__ = "users"

    id: Mapped[str] = _uuid_pk()

    # Identity
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    phone_normalized: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferred_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferred_language: Mapped[str] = mapped_column(String(10), nullable=False, default="es")

    # Profile
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    medical_vault: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    notification_preferences: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value
    )
    chatwoot_conversation_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utc_now, onupdate=utc_now
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_users_created_at", "created_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, phone={self.phone}, status={self.status})>"


class ConversationState(Base):
    """
    ORM model for conversation_state table.

    One row per user, written only by the conversation pipeline.
    """

    __tablename__ = "conversation_state"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    current_topic: Mapped[str | None] = mapped_column(String(100), nullable=True)
    topic_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    emotional_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    needs_human: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    handoff_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class Message(Base):
    """
    ORM model for messages table.

    Append-only conversation log.
    """

    __tablename__ = "messages"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="whatsapp")
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_messages_created_at", "created_at"),)


class BillingAccount(Base):
    """
    ORM model for billing_accounts table.

    credits_balance always equals the sum of the account's ledger entries;
    the mutation services keep this true, not a database constraint.
    """

    __tablename__ = "billing_accounts"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    subscription_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.NONE.value
    )
    subscription_plan: Mapped[str | None] = mapped_column(String(64), nullable=True)
    credits_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_monthly_allowance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_used_this_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<BillingAccount(id={self.id}, user_id={self.user_id}, "
            f"status={self.subscription_status}, balance={self.credits_balance})>"
        )


class CreditLedgerEntry(Base):
    """
    ORM model for credit_ledger table.

    Immutable audit trail: one row per balance change, written in the same
    transaction as the balance update.
    """

    __tablename__ = "credit_ledger"

    id: Mapped[str] = _uuid_pk()
    billing_account_id: Mapped[str] = _uuid_fk()
    user_id: Mapped[str] = _uuid_fk()
    change_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_credit_ledger_created_at", "created_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditLedgerEntry(id={self.id}, change={self.change_amount}, "
            f"type={self.change_type}, balance_after={self.balance_after})>"
        )


class HealthRoutine(Base):
    """ORM model for health_routines table."""

    __tablename__ = "health_routines"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RoutineStatus.ACTIVE.value
    )
    schedule: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    configuration: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class OperatorNote(Base):
    """ORM model for operator_notes table (append-only)."""

    __tablename__ = "operator_notes"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class Followup(Base):
    """ORM model for followups table. Overdue is derived, never stored."""

    __tablename__ = "followups"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


# ============================================================================
# Pipeline telemetry (read-only)
# ============================================================================


class CircuitBreaker(Base):
    """ORM model for circuit_breakers table, maintained by the messaging pipeline."""

    __tablename__ = "circuit_breakers"

    id: Mapped[str] = _uuid_pk()
    service_name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="closed")
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failure_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AIUsage(Base):
    """ORM model for ai_usage table: one row per text-generation call."""

    __tablename__ = "ai_usage"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str | None] = _uuid_fk(nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    input_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=0)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_ai_usage_created_at", "created_at"),)


class TranscriptionUsage(Base):
    """ORM model for transcription_usage table: one row per media transcription."""

    __tablename__ = "transcription_usage"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str | None] = _uuid_fk(nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    audio_seconds: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=0)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_transcription_usage_created_at", "created_at"),)


class ExecutionLog(Base):
    """ORM model for execution_logs table (automation workflow runs)."""

    __tablename__ = "execution_logs"

    id: Mapped[str] = _uuid_pk()
    workflow_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


# ============================================================================
# Health vault and care network (read-only)
# ============================================================================


class VaultCondition(Base):
    """ORM model for vault_conditions table."""

    __tablename__ = "vault_conditions"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VaultMedication(Base):
    """ORM model for vault_medications table."""

    __tablename__ = "vault_medications"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VaultAllergy(Base):
    """ORM model for vault_allergies table."""

    __tablename__ = "vault_allergies"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VaultProfile(Base):
    """ORM model for vault_profiles table."""

    __tablename__ = "vault_profiles"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = _uuid_fk()


class Provider(Base):
    """ORM model for providers table."""

    __tablename__ = "providers"

    id: Mapped[str] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    clinic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")


class Appointment(Base):
    """ORM model for appointments table. provider_id is stored as text."""

    __tablename__ = "appointments"

    id: Mapped[str] = _uuid_pk()
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
