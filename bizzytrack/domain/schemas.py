from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Payload(BaseModel):
    # Unknown keys are rejected so typos never silently become no-op patches.
    model_config = ConfigDict(extra="forbid")


# Customers.


class CustomerCategoryCreate(_Payload):
    name: str = Field(min_length=1)
    description: str | None = None
    color: str = Field(default="#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class CustomerCategoryUpdate(_Payload):
    name: str | None = None
    description: str | None = None
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    discount_percentage: Decimal | None = Field(default=None, ge=0, le=100)


class CustomerCreate(_Payload):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    category_id: str | None = None
    email: str | None = None
    phone: str | None = None
    company_name: str | None = None
    tax_number: str | None = None
    address: str | None = None
    notes: str | None = None


class CustomerUpdate(_Payload):
    category_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    company_name: str | None = None
    tax_number: str | None = None
    address: str | None = None
    notes: str | None = None


class CustomerFilters(_Payload):
    is_active: bool | None = None
    category_id: str | None = None


# Service catalog.


class ServiceCreate(_Payload):
    name: str = Field(min_length=1)
    description: str | None = None
    category: str | None = None
    base_price: Decimal = Field(default=Decimal("0"), ge=0)
    duration_minutes: int | None = Field(default=None, ge=0)


class ServiceUpdate(_Payload):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    base_price: Decimal | None = Field(default=None, ge=0)
    duration_minutes: int | None = Field(default=None, ge=0)


class ServiceFilters(_Payload):
    is_active: bool | None = None
    category: str | None = None


# Jobs.

JobPriority = Literal["low", "medium", "high", "urgent"]


class JobCreate(_Payload):
    service_id: str
    title: str = Field(min_length=1)
    customer_id: str | None = None
    description: str | None = None
    priority: JobPriority = "medium"
    scheduled_date: datetime | None = None
    estimated_duration_minutes: int | None = Field(default=None, ge=0)
    base_price: Decimal | None = Field(default=None, ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    location: str | None = None
    assigned_to: str | None = None
    is_package_job: bool = False


class JobUpdate(_Payload):
    title: str | None = None
    description: str | None = None
    scheduled_date: datetime | None = None
    estimated_duration_minutes: int | None = Field(default=None, ge=0)
    actual_duration_minutes: int | None = Field(default=None, ge=0)
    priority: JobPriority | None = None
    assigned_to: str | None = None
    discount_amount: Decimal | None = Field(default=None, ge=0)
    location: str | None = None


class JobFilters(_Payload):
    status: str | None = None
    assigned_to: str | None = None
    customer_id: str | None = None
    is_package_job: bool | None = None
    priority: str | None = None
    is_active: bool | None = None


# Departments.


class DepartmentCreate(_Payload):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    description: str | None = None
    parent_department_id: str | None = None
    cost_center_code: str | None = None
    department_type: str | None = None
    color_hex: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    sort_order: int = 0


class DepartmentUpdate(_Payload):
    name: str | None = None
    code: str | None = None
    description: str | None = None
    parent_department_id: str | None = None
    cost_center_code: str | None = None
    department_type: str | None = None
    color_hex: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    sort_order: int | None = None


class DepartmentFilters(_Payload):
    department_type: str | None = None
    is_active: bool | None = None
    parent_department_id: str | None = None


# Job department assignments.


class AssignmentCreate(_Payload):
    job_id: str
    department_id: str
    assignment_type: str = "primary"
    status: str = "assigned"
    priority: str = "medium"
    estimated_hours: Decimal | None = Field(default=None, ge=0)
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    notes: str | None = None
    sla_deadline: datetime | None = None


class AssignmentUpdate(_Payload):
    priority: str | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0)
    actual_hours: Decimal | None = Field(default=None, ge=0)
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    notes: str | None = None
    sla_deadline: datetime | None = None


class AssignmentFilters(_Payload):
    status: str | None = None
    department_id: str | None = None
    job_id: str | None = None
    priority: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


# Department workflow.


class HandoffCreate(_Payload):
    job_id: str
    from_department_id: str
    to_department_id: str
    notes: str | None = None
    required_actions: list[str] = Field(default_factory=list)


# Branches.


class BranchCreate(_Payload):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    address: str | None = None
    city: str | None = None
    state_province: str | None = None
    country: str = "US"
    postal_code: str | None = None
    phone: str | None = None
    email: str | None = None
    manager_id: str | None = None
    timezone: str = "UTC"
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class BranchUpdate(_Payload):
    name: str | None = None
    code: str | None = None
    address: str | None = None
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    email: str | None = None
    manager_id: str | None = None
    timezone: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class BranchFilters(_Payload):
    is_active: bool | None = None
    city: str | None = None
    manager_id: str | None = None


class CrossBranchAccessCreate(_Payload):
    from_branch_id: str
    to_branch_id: str
    access_type: Literal["read", "write", "full"] = "read"
    resource_types: list[str] = Field(default_factory=list)


# Suppliers.


class SupplierCreate(_Payload):
    name: str = Field(min_length=1)
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    tax_id: str | None = None
    payment_terms: str | None = None
    rating: int = Field(default=5, ge=1, le=5)


class SupplierUpdate(_Payload):
    name: str | None = None
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    tax_id: str | None = None
    payment_terms: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)


class SupplierFilters(_Payload):
    is_active: bool | None = None
    search: str | None = None


# Equipment.

EquipmentStatus = Literal["available", "in_use", "maintenance", "retired"]


class EquipmentCreate(_Payload):
    name: str = Field(min_length=1)
    asset_code: str = Field(min_length=1)
    category: str | None = None
    serial_number: str | None = None
    purchase_date: datetime | None = None
    purchase_cost: Decimal | None = Field(default=None, ge=0)
    status: EquipmentStatus = "available"
    branch_id: str | None = None
    notes: str | None = None


class EquipmentUpdate(_Payload):
    name: str | None = None
    asset_code: str | None = None
    category: str | None = None
    serial_number: str | None = None
    purchase_date: datetime | None = None
    purchase_cost: Decimal | None = Field(default=None, ge=0)
    status: EquipmentStatus | None = None
    branch_id: str | None = None
    notes: str | None = None


class EquipmentFilters(_Payload):
    status: str | None = None
    branch_id: str | None = None
    category: str | None = None
    is_active: bool | None = None


# API keys.


class ApiKeyCreate(_Payload):
    name: str = Field(min_length=1)
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)
    rate_limit_per_minute: int | None = Field(default=None, ge=1)
    allowed_ips: list[str] = Field(default_factory=list)
    allowed_origins: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class ApiKeyUpdate(_Payload):
    name: str | None = None
    description: str | None = None
    permissions: list[str] | None = None
    rate_limit_per_minute: int | None = Field(default=None, ge=1)
    allowed_ips: list[str] | None = None
    allowed_origins: list[str] | None = None
    expires_at: datetime | None = None


class ApiKeyFilters(_Payload):
    is_active: bool | None = None


# Webhooks.


class RetryConfig(_Payload):
    max_attempts: int = Field(default=3, ge=1, le=20)
    backoff_multiplier: int = Field(default=2, ge=1, le=10)


class WebhookEndpointCreate(_Payload):
    name: str = Field(min_length=1)
    url: str
    description: str | None = None
    events: list[str] = Field(default_factory=list)
    content_type: str = "application/json"
    retry_config: RetryConfig | None = None

    @field_validator("url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be http(s)")
        return value


class WebhookEndpointUpdate(_Payload):
    name: str | None = None
    url: str | None = None
    description: str | None = None
    events: list[str] | None = None
    content_type: str | None = None
    retry_config: dict[str, Any] | None = None


class WebhookSignatureCreate(_Payload):
    provider_name: str = Field(min_length=1)
    secret_key: str = Field(min_length=8)
    signature_header: str = "X-Signature"
    algorithm: Literal["sha1", "sha256", "sha512"] = "sha256"


# SLA.


class SlaConfigCreate(_Payload):
    name: str = Field(min_length=1)
    service_id: str | None = None
    priority_level: str | None = None
    response_time_minutes: int = Field(gt=0)
    resolution_time_minutes: int = Field(gt=0)
    escalation_rules: dict[str, Any] = Field(default_factory=dict)


class SlaConfigUpdate(_Payload):
    name: str | None = None
    priority_level: str | None = None
    response_time_minutes: int | None = Field(default=None, gt=0)
    resolution_time_minutes: int | None = Field(default=None, gt=0)
    escalation_rules: dict[str, Any] | None = None


class SlaViolationFilters(_Payload):
    status: str | None = None
    violation_type: str | None = None
    job_id: str | None = None


# Routing.


class StaffProfileCreate(_Payload):
    user_id: str
    display_name: str = Field(min_length=1)
    department_id: str | None = None
    skills: list[str] = Field(default_factory=list)
    is_available: bool = True
    max_daily_jobs: int = Field(default=8, ge=1)


class StaffProfileUpdate(_Payload):
    display_name: str | None = None
    department_id: str | None = None
    skills: list[str] | None = None
    is_available: bool | None = None
    max_daily_jobs: int | None = Field(default=None, ge=1)


class RoutingRuleCreate(_Payload):
    name: str = Field(min_length=1)
    conditions: dict[str, Any] = Field(default_factory=dict)
    target_department_id: str | None = None
    required_skills: list[str] = Field(default_factory=list)
    priority_boost: int = 0
    max_jobs_per_day: int | None = Field(default=None, ge=1)


class RoutingRuleUpdate(_Payload):
    name: str | None = None
    conditions: dict[str, Any] | None = None
    target_department_id: str | None = None
    required_skills: list[str] | None = None
    priority_boost: int | None = None
    max_jobs_per_day: int | None = Field(default=None, ge=1)


# Discounts.


class DiscountRequest(_Payload):
    original_amount: Decimal = Field(gt=0)
    discount_amount: Decimal = Field(ge=0)
    job_id: str | None = None
    customer_id: str | None = None
    reason: str | None = None


class DiscountHistoryFilters(_Payload):
    status: str | None = None
    requested_by: str | None = None
    approved_by: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
