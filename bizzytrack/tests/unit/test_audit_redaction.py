from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from bizzytrack.domain.models import Job
from bizzytrack.domain.schemas import CustomerUpdate
from bizzytrack.services.audit import sanitize_values, snapshot


def test_sensitive_keys_are_redacted_recursively() -> None:
    payload = {
        "name": "key",
        "secret_hash": "abc",
        "nested": {"Authorization": "Bearer x", "safe": 1},
        "items": [{"api_key": "k"}, {"ok": True}],
    }
    sanitized = sanitize_values(payload)
    assert sanitized["name"] == "key"
    assert sanitized["secret_hash"] == "[REDACTED]"
    assert sanitized["nested"] == {"Authorization": "[REDACTED]", "safe": 1}
    assert sanitized["items"] == [{"api_key": "[REDACTED]"}, {"ok": True}]


def test_sanitize_leaves_input_untouched() -> None:
    payload = {"password": "hunter2"}
    sanitize_values(payload)
    assert payload == {"password": "hunter2"}


def test_snapshot_of_payload_only_includes_set_fields() -> None:
    assert snapshot(CustomerUpdate(email=None, first_name="Ada")) == {"email": None, "first_name": "Ada"}


def test_snapshot_of_row_is_json_safe() -> None:
    created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    job = Job(
        id="j1",
        business_id="b1",
        job_number="JOB-001",
        service_id="s1",
        title="Tune-up",
        base_price=Decimal("120.50"),
        discount_amount=Decimal("20.50"),
        final_price=Decimal("100.00"),
        created_at=created,
    )
    data = snapshot(job, fields=["final_price", "created_at", "title"])
    assert data == {"final_price": "100.00", "created_at": created.isoformat(), "title": "Tune-up"}
