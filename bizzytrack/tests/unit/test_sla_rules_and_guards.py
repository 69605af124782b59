from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from bizzytrack.domain.models import Job, JobRoutingRule, SlaConfiguration, StaffProfile
from bizzytrack.persistence.guards import TenantPredicateError, require_tenant_id, tenant_predicate
from bizzytrack.services.routing import has_skills, rule_matches
from bizzytrack.services.sla import config_applies, due_violations


CREATED = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _job(**overrides) -> Job:
    values = {"service_id": "svc-1", "priority": "high", "status": "pending", "created_at": CREATED}
    values.update(overrides)
    return Job(**values)


def _config(**overrides) -> SlaConfiguration:
    values = {"response_time_minutes": 30, "resolution_time_minutes": 240}
    values.update(overrides)
    return SlaConfiguration(**values)


def test_unscoped_config_applies_to_every_job() -> None:
    assert config_applies(_config(), _job())


def test_config_scope_must_match() -> None:
    assert config_applies(_config(service_id="svc-1", priority_level="high"), _job())
    assert not config_applies(_config(service_id="svc-2"), _job())
    assert not config_applies(_config(priority_level="low"), _job())


def test_pending_job_misses_response_deadline_first() -> None:
    missed = due_violations(_config(), _job(), CREATED + timedelta(minutes=31))
    assert missed == [("response_time", CREATED + timedelta(minutes=30))]


def test_started_job_only_tracks_resolution() -> None:
    job = _job(status="in-progress")
    assert due_violations(_config(), job, CREATED + timedelta(minutes=31)) == []
    missed = due_violations(_config(), job, CREATED + timedelta(hours=5))
    assert [kind for kind, _ in missed] == ["resolution_time"]


def test_closed_job_never_violates() -> None:
    assert due_violations(_config(), _job(status="completed"), CREATED + timedelta(days=3)) == []


def test_naive_creation_time_is_treated_as_utc() -> None:
    job = _job(created_at=CREATED.replace(tzinfo=None))
    assert len(due_violations(_config(), job, CREATED + timedelta(hours=5))) == 2


def test_rule_conditions_compare_job_attributes() -> None:
    rule = JobRoutingRule(conditions={"priority": "high"})
    assert rule_matches(rule, _job())
    assert not rule_matches(rule, _job(priority="low"))
    assert rule_matches(JobRoutingRule(conditions={}), _job())


def test_required_skills_are_a_subset() -> None:
    profile = StaffProfile(skills=["hvac", "electrical"])
    assert has_skills(profile, ["hvac"])
    assert has_skills(profile, [])
    assert not has_skills(profile, ["hvac", "plumbing"])


@pytest.mark.parametrize("value", ["", None])
def test_missing_tenant_is_refused(value) -> None:
    with pytest.raises(TenantPredicateError):
        require_tenant_id(value)
    with pytest.raises(TenantPredicateError):
        tenant_predicate(Job, value)


def test_guard_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    from bizzytrack.core.config import get_settings

    monkeypatch.setenv("AUTHZ_REQUIRE_TENANT_PREDICATE", "false")
    get_settings.cache_clear()
    require_tenant_id(None)


def test_tenant_predicate_compiles_to_business_filter() -> None:
    clause = tenant_predicate(Job, "biz-1")
    assert str(clause) == "jobs.business_id = :business_id_1"
