"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _soft_delete() -> list[sa.Column]:
    return [
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
    ]


def _tenant_column() -> sa.Column:
    # Avoid index=True here because we create explicit indexes below.
    return sa.Column("business_id", sa.String(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_column(),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_business_id", "audit_logs", ["business_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_business_created", "audit_logs", ["business_id", "created_at"])
    op.create_index(
        "ix_audit_logs_resource", "audit_logs", ["business_id", "resource_type", "resource_id"]
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("category_id", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("tax_number", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_index("ix_customers_business_id", "customers", ["business_id"])

    op.create_table(
        "services",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "name", name="uq_services_business_name"),
    )
    op.create_index("ix_services_business_id", "services", ["business_id"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_number", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("service_id", sa.String(), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("is_package_job", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "job_number", name="uq_jobs_business_number"),
    )
    op.create_index("ix_jobs_business_id", "jobs", ["business_id"])
    op.create_index("ix_jobs_assigned_to", "jobs", ["assigned_to"])
    op.create_index("ix_jobs_business_status", "jobs", ["business_id", "status"])

    op.create_table(
        "job_status_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_job_status_history_business_id", "job_status_history", ["business_id"])
    op.create_index("ix_job_status_history_job", "job_status_history", ["job_id", "id"])

    op.create_table(
        "departments",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("cost_center_code", sa.String(), nullable=True),
        sa.Column("department_type", sa.String(), nullable=True),
        sa.Column("color_hex", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "code", name="uq_departments_business_code"),
    )
    op.create_index("ix_departments_business_id", "departments", ["business_id"])

    op.create_table(
        "job_department_assignments",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("assignment_type", sa.String(), nullable=False, server_default="primary"),
        sa.Column("status", sa.String(), nullable=False, server_default="assigned"),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("estimated_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("actual_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("assigned_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "job_id", "department_id", "assignment_type", name="uq_job_department_assignment"
        ),
    )
    op.create_index(
        "ix_job_department_assignments_business_id", "job_department_assignments", ["business_id"]
    )
    op.create_index(
        "ix_job_department_assignments_department_id", "job_department_assignments", ["department_id"]
    )

    op.create_table(
        "department_handoffs",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("from_department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("to_department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("required_actions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("handed_off_by", sa.String(), nullable=True),
        sa.Column("accepted_by", sa.String(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_department_handoffs_business_id", "department_handoffs", ["business_id"])
    op.create_index("ix_department_handoffs_job_id", "department_handoffs", ["job_id"])

    op.create_table(
        "branches",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("state_province", sa.String(), nullable=True),
        sa.Column("country", sa.String(), nullable=False, server_default="US"),
        sa.Column("postal_code", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("manager_id", sa.String(), nullable=True),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "code", name="uq_branches_business_code"),
    )
    op.create_index("ix_branches_business_id", "branches", ["business_id"])

    op.create_table(
        "user_branch_assignments",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("branch_id", sa.String(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("access_level", sa.String(), nullable=False, server_default="standard"),
        sa.Column("assigned_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "user_id", "branch_id", name="uq_user_branch_assignment"),
    )
    op.create_index("ix_user_branch_assignments_business_id", "user_branch_assignments", ["business_id"])
    op.create_index("ix_user_branch_assignments_user_id", "user_branch_assignments", ["user_id"])
    # At most one primary branch per user within a business.
    op.create_index(
        "uq_user_branch_primary",
        "user_branch_assignments",
        ["business_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )

    op.create_table(
        "cross_branch_access",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("from_branch_id", sa.String(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("to_branch_id", sa.String(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("access_type", sa.String(), nullable=False, server_default="read"),
        sa.Column("resource_types", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_cross_branch_access_business_id", "cross_branch_access", ["business_id"])

    op.create_table(
        "suppliers",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("contact_person", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("tax_id", sa.String(), nullable=True),
        sa.Column("payment_terms", sa.String(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "name", name="uq_suppliers_business_name"),
    )
    op.create_index("ix_suppliers_business_id", "suppliers", ["business_id"])

    op.create_table(
        "equipment",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("asset_code", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("purchase_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="available"),
        sa.Column("branch_id", sa.String(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
        sa.UniqueConstraint("business_id", "asset_code", name="uq_equipment_business_code"),
    )
    op.create_index("ix_equipment_business_id", "equipment", ["business_id"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("secret_hash", sa.String(), nullable=False),
        sa.Column("permissions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("rate_limit_per_minute", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("allowed_ips", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("allowed_origins", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_api_keys_business_id", "api_keys", ["business_id"])

    op.create_table(
        "api_usage_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_column(),
        sa.Column("api_key_id", sa.String(), nullable=False),
        sa.Column("endpoint", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_api_usage_logs_business_id", "api_usage_logs", ["business_id"])
    op.create_index("ix_api_usage_logs_api_key_id", "api_usage_logs", ["api_key_id"])

    op.create_table(
        "webhook_endpoints",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("secret_token", sa.String(), nullable=False),
        sa.Column("events", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("content_type", sa.String(), nullable=False, server_default="application/json"),
        sa.Column("retry_config", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_index("ix_webhook_endpoints_business_id", "webhook_endpoints", ["business_id"])

    op.create_table(
        "webhook_signatures",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("provider_name", sa.String(), nullable=False),
        sa.Column("signature_header", sa.String(), nullable=False, server_default="X-Signature"),
        sa.Column("algorithm", sa.String(), nullable=False, server_default="sha256"),
        sa.Column("secret_key", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "provider_name", name="uq_webhook_signatures_provider"),
    )
    op.create_index("ix_webhook_signatures_business_id", "webhook_signatures", ["business_id"])

    op.create_table(
        "webhook_delivery_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tenant_column(),
        sa.Column("endpoint_id", sa.String(), sa.ForeignKey("webhook_endpoints.id"), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_webhook_delivery_logs_business_id", "webhook_delivery_logs", ["business_id"])
    op.create_index("ix_webhook_delivery_logs_endpoint_id", "webhook_delivery_logs", ["endpoint_id"])

    op.create_table(
        "sla_configurations",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("service_id", sa.String(), sa.ForeignKey("services.id"), nullable=True),
        sa.Column("priority_level", sa.String(), nullable=True),
        sa.Column("response_time_minutes", sa.Integer(), nullable=False),
        sa.Column("resolution_time_minutes", sa.Integer(), nullable=False),
        sa.Column("escalation_rules", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_index("ix_sla_configurations_business_id", "sla_configurations", ["business_id"])

    op.create_table(
        "sla_violations",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("sla_config_id", sa.String(), sa.ForeignKey("sla_configurations.id"), nullable=False),
        sa.Column("violation_type", sa.String(), nullable=False),
        sa.Column("expected_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("violation_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("escalated_to", sa.String(), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("job_id", "sla_config_id", "violation_type", name="uq_sla_violation_once"),
    )
    op.create_index("ix_sla_violations_business_id", "sla_violations", ["business_id"])
    op.create_index("ix_sla_violations_job_id", "sla_violations", ["job_id"])

    op.create_table(
        "staff_profiles",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("skills", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_daily_jobs", sa.Integer(), nullable=False, server_default="8"),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "user_id", name="uq_staff_profiles_user"),
    )
    op.create_index("ix_staff_profiles_business_id", "staff_profiles", ["business_id"])

    op.create_table(
        "job_routing_rules",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("conditions", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("target_department_id", sa.String(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("required_skills", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("priority_boost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_jobs_per_day", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        *_soft_delete(),
    )
    op.create_index("ix_job_routing_rules_business_id", "job_routing_rules", ["business_id"])

    op.create_table(
        "field_job_assignments",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("staff_user_id", sa.String(), nullable=False),
        sa.Column("routing_rule_id", sa.String(), sa.ForeignKey("job_routing_rules.id"), nullable=True),
        sa.Column("assignment_method", sa.String(), nullable=False, server_default="manual"),
        sa.Column("status", sa.String(), nullable=False, server_default="assigned"),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_field_job_assignments_business_id", "field_job_assignments", ["business_id"])
    op.create_index("ix_field_job_assignments_job_id", "field_job_assignments", ["job_id"])
    op.create_index("ix_field_job_assignments_staff_user_id", "field_job_assignments", ["staff_user_id"])

    op.create_table(
        "discount_approvals",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("job_id", sa.String(), sa.ForeignKey("jobs.id"), nullable=True),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("original_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("requested_by", sa.String(), nullable=True),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decision_notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_discount_approvals_business_id", "discount_approvals", ["business_id"])
    op.create_index("ix_discount_approvals_status", "discount_approvals", ["status"])

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.String(), primary_key=True),
        _tenant_column(),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("permission", sa.String(), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("limit_value", sa.Numeric(8, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("business_id", "user_id", "permission", name="uq_user_permissions"),
    )
    op.create_index("ix_user_permissions_business_id", "user_permissions", ["business_id"])
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"])


def downgrade() -> None:
    # Drop in reverse dependency order.
    for table in (
        "user_permissions",
        "discount_approvals",
        "field_job_assignments",
        "job_routing_rules",
        "staff_profiles",
        "sla_violations",
        "sla_configurations",
        "webhook_delivery_logs",
        "webhook_signatures",
        "webhook_endpoints",
        "api_usage_logs",
        "api_keys",
        "equipment",
        "suppliers",
        "cross_branch_access",
        "user_branch_assignments",
        "branches",
        "department_handoffs",
        "job_department_assignments",
        "departments",
        "job_status_history",
        "jobs",
        "services",
        "customers",
        "audit_logs",
    ):
        op.drop_table(table)
