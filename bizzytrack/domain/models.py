from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from bizzytrack.core.clock import utc_now
from bizzytrack.domain.lifecycle import ResourceState, resource_state


# Use JSONB on Postgres and plain JSON elsewhere so tests can run on SQLite.
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
SerialId = BigInteger().with_variant(Integer(), "sqlite")
Money = Numeric(12, 2)


def new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=utc_now
    )


class SoftDeleteMixin:
    # Deleting flips is_active and records who/when so history stays readable.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String, nullable=True)

    @property
    def state(self) -> ResourceState:
        return resource_state(
            is_active=self.is_active,
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
        )


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_business_created", "business_id", "created_at"),
        Index("ix_audit_logs_resource", "business_id", "resource_type", "resource_id"),
    )

    # Monotonic ids keep ordering stable when timestamps collide.
    id: Mapped[int] = mapped_column(SerialId, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, index=True)
    resource_type: Mapped[str] = mapped_column(String)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class CustomerCategory(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "customer_categories"
    __table_args__ = (UniqueConstraint("business_id", "name", name="uq_customer_categories_business_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String, default="#3B82F6")
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class Customer(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    category_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("customer_categories.id"), nullable=True
    )
    first_name: Mapped[str] = mapped_column(String)
    last_name: Mapped[str] = mapped_column(String)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    company_name: Mapped[str | None] = mapped_column(String, nullable=True)
    tax_number: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class CatalogService(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "services"
    __table_args__ = (UniqueConstraint("business_id", "name", name="uq_services_business_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class Job(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "jobs"
    __table_args__ = (
        UniqueConstraint("business_id", "job_number", name="uq_jobs_business_number"),
        Index("ix_jobs_business_status", "business_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_number: Mapped[str] = mapped_column(String)
    customer_id: Mapped[str | None] = mapped_column(String, ForeignKey("customers.id"), nullable=True)
    service_id: Mapped[str] = mapped_column(String, ForeignKey("services.id"))
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    priority: Mapped[str] = mapped_column(String, default="medium")
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    base_price: Mapped[Decimal] = mapped_column(Money)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    final_price: Mapped[Decimal] = mapped_column(Money)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_package_job: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class JobStatusHistory(Base):
    __tablename__ = "job_status_history"
    __table_args__ = (Index("ix_job_status_history_job", "job_id", "id"),)

    # Append-only; the serial id preserves call order.
    id: Mapped[int] = mapped_column(SerialId, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str] = mapped_column(String, ForeignKey("jobs.id"))
    from_status: Mapped[str | None] = mapped_column(String, nullable=True)
    to_status: Mapped[str] = mapped_column(String)
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Department(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "departments"
    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_departments_business_code"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    code: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_department_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("departments.id"), nullable=True
    )
    cost_center_code: Mapped[str | None] = mapped_column(String, nullable=True)
    department_type: Mapped[str | None] = mapped_column(String, nullable=True)
    color_hex: Mapped[str | None] = mapped_column(String, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class JobDepartmentAssignment(TimestampMixin, Base):
    __tablename__ = "job_department_assignments"
    __table_args__ = (
        UniqueConstraint(
            "job_id", "department_id", "assignment_type", name="uq_job_department_assignment"
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str] = mapped_column(String, ForeignKey("jobs.id"))
    department_id: Mapped[str] = mapped_column(String, ForeignKey("departments.id"), index=True)
    assignment_type: Mapped[str] = mapped_column(String, default="primary")
    status: Mapped[str] = mapped_column(String, default="assigned")
    priority: Mapped[str] = mapped_column(String, default="medium")
    estimated_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    actual_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)


class DepartmentHandoff(TimestampMixin, Base):
    __tablename__ = "department_handoffs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str] = mapped_column(String, ForeignKey("jobs.id"), index=True)
    from_department_id: Mapped[str] = mapped_column(String, ForeignKey("departments.id"))
    to_department_id: Mapped[str] = mapped_column(String, ForeignKey("departments.id"))
    status: Mapped[str] = mapped_column(String, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_actions: Mapped[list[str]] = mapped_column(JSONType, default=list)
    handed_off_by: Mapped[str | None] = mapped_column(String, nullable=True)
    accepted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Branch(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "branches"
    __table_args__ = (UniqueConstraint("business_id", "code", name="uq_branches_business_code"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    code: Mapped[str] = mapped_column(String)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    state_province: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str] = mapped_column(String, default="US")
    postal_code: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    manager_id: Mapped[str | None] = mapped_column(String, nullable=True)
    timezone: Mapped[str] = mapped_column(String, default="UTC")
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class UserBranchAssignment(TimestampMixin, Base):
    __tablename__ = "user_branch_assignments"
    __table_args__ = (
        UniqueConstraint("business_id", "user_id", "branch_id", name="uq_user_branch_assignment"),
        # At most one primary branch per user; concurrent claims fail instead of both winning.
        Index(
            "uq_user_branch_primary",
            "business_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    branch_id: Mapped[str] = mapped_column(String, ForeignKey("branches.id"))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    access_level: Mapped[str] = mapped_column(String, default="standard")
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)


class CrossBranchAccess(Base):
    __tablename__ = "cross_branch_access"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    from_branch_id: Mapped[str] = mapped_column(String, ForeignKey("branches.id"))
    to_branch_id: Mapped[str] = mapped_column(String, ForeignKey("branches.id"))
    access_type: Mapped[str] = mapped_column(String, default="read")
    resource_types: Mapped[list[str]] = mapped_column(JSONType, default=list)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Supplier(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "suppliers"
    __table_args__ = (UniqueConstraint("business_id", "name", name="uq_suppliers_business_name"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    contact_person: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String, nullable=True)
    rating: Mapped[int] = mapped_column(Integer, default=5)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class EquipmentAsset(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "equipment"
    __table_args__ = (UniqueConstraint("business_id", "asset_code", name="uq_equipment_business_code"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    asset_code: Mapped[str] = mapped_column(String)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String, nullable=True)
    purchase_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    purchase_cost: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    status: Mapped[str] = mapped_column(String, default="available")
    branch_id: Mapped[str | None] = mapped_column(String, ForeignKey("branches.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class ApiKey(TimestampMixin, Base):
    __tablename__ = "api_keys"

    # The public key id doubles as the primary key; only the secret digest is stored.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    secret_hash: Mapped[str] = mapped_column(String)
    permissions: Mapped[list[str]] = mapped_column(JSONType, default=list)
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, default=60)
    allowed_ips: Mapped[list[str]] = mapped_column(JSONType, default=list)
    allowed_origins: Mapped[list[str]] = mapped_column(JSONType, default=list)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class ApiUsageLog(Base):
    __tablename__ = "api_usage_logs"

    id: Mapped[int] = mapped_column(SerialId, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String, index=True)
    api_key_id: Mapped[str] = mapped_column(String, index=True)
    endpoint: Mapped[str] = mapped_column(String)
    method: Mapped[str] = mapped_column(String)
    status_code: Mapped[int] = mapped_column(Integer)
    response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class WebhookEndpoint(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Outbound signing needs the key material itself; reads never expose it.
    secret_token: Mapped[str] = mapped_column(String)
    events: Mapped[list[str]] = mapped_column(JSONType, default=list)
    content_type: Mapped[str] = mapped_column(String, default="application/json")
    retry_config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class WebhookSignature(TimestampMixin, Base):
    __tablename__ = "webhook_signatures"
    __table_args__ = (
        UniqueConstraint("business_id", "provider_name", name="uq_webhook_signatures_provider"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    provider_name: Mapped[str] = mapped_column(String)
    signature_header: Mapped[str] = mapped_column(String, default="X-Signature")
    algorithm: Mapped[str] = mapped_column(String, default="sha256")
    secret_key: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class WebhookDeliveryLog(TimestampMixin, Base):
    __tablename__ = "webhook_delivery_logs"

    id: Mapped[int] = mapped_column(SerialId, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String, index=True)
    endpoint_id: Mapped[str] = mapped_column(String, ForeignKey("webhook_endpoints.id"), index=True)
    event_type: Mapped[str] = mapped_column(String)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    status: Mapped[str] = mapped_column(String, default="pending")
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SlaConfiguration(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "sla_configurations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    # Null service id applies the SLA to every job.
    service_id: Mapped[str | None] = mapped_column(String, ForeignKey("services.id"), nullable=True)
    priority_level: Mapped[str | None] = mapped_column(String, nullable=True)
    response_time_minutes: Mapped[int] = mapped_column(Integer)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer)
    escalation_rules: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class SlaViolation(Base):
    __tablename__ = "sla_violations"
    __table_args__ = (
        UniqueConstraint("job_id", "sla_config_id", "violation_type", name="uq_sla_violation_once"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str] = mapped_column(String, ForeignKey("jobs.id"), index=True)
    sla_config_id: Mapped[str] = mapped_column(String, ForeignKey("sla_configurations.id"))
    violation_type: Mapped[str] = mapped_column(String)
    expected_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    actual_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    violation_minutes: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String, default="open")
    escalated_to: Mapped[str | None] = mapped_column(String, nullable=True)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0)
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class StaffProfile(TimestampMixin, Base):
    __tablename__ = "staff_profiles"
    __table_args__ = (UniqueConstraint("business_id", "user_id", name="uq_staff_profiles_user"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String)
    display_name: Mapped[str] = mapped_column(String)
    department_id: Mapped[str | None] = mapped_column(String, ForeignKey("departments.id"), nullable=True)
    skills: Mapped[list[str]] = mapped_column(JSONType, default=list)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    max_daily_jobs: Mapped[int] = mapped_column(Integer, default=8)


class JobRoutingRule(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "job_routing_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    # Exact-match job attributes, e.g. {"priority": "high"}.
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    target_department_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("departments.id"), nullable=True
    )
    required_skills: Mapped[list[str]] = mapped_column(JSONType, default=list)
    priority_boost: Mapped[int] = mapped_column(Integer, default=0)
    max_jobs_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)


class FieldJobAssignment(Base):
    __tablename__ = "field_job_assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str] = mapped_column(String, ForeignKey("jobs.id"), index=True)
    staff_user_id: Mapped[str] = mapped_column(String, index=True)
    routing_rule_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("job_routing_rules.id"), nullable=True
    )
    assignment_method: Mapped[str] = mapped_column(String, default="manual")
    status: Mapped[str] = mapped_column(String, default="assigned")
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class DiscountApproval(TimestampMixin, Base):
    __tablename__ = "discount_approvals"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    job_id: Mapped[str | None] = mapped_column(String, ForeignKey("jobs.id"), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String, ForeignKey("customers.id"), nullable=True)
    original_amount: Mapped[Decimal] = mapped_column(Money)
    discount_amount: Mapped[Decimal] = mapped_column(Money)
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    requested_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class UserPermission(Base):
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("business_id", "user_id", "permission", name="uq_user_permissions"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    business_id: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    permission: Mapped[str] = mapped_column(String)
    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Optional numeric ceiling, e.g. maximum discount percentage.
    limit_value: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
