from __future__ import annotations

import pytest
from sqlalchemy import select

from bizzytrack.core.errors import InvalidArgumentError
from bizzytrack.domain.models import Customer, Job
from bizzytrack.domain.schemas import CustomerUpdate, JobFilters
from bizzytrack.persistence.query import (
    UNSET,
    Field,
    build_set,
    build_where,
    fields_from_model,
    paginate,
    patch_fields,
)


def _job_candidates(status=UNSET, assigned_to=UNSET, priority=UNSET) -> list[Field]:
    return [
        Field("status", status, Job.status),
        Field("assigned_to", assigned_to, Job.assigned_to),
        Field("priority", priority, Job.priority),
    ]


def test_unset_candidates_are_skipped_and_placeholders_are_dense() -> None:
    clause = build_where(_job_candidates(status="pending", priority="high"))
    assert clause.sql == "status = $1 AND priority = $2"
    assert clause.params == ("pending", "high")
    assert clause.next_index == 3
    assert len(clause.conditions) == 2


def test_same_candidates_render_identically() -> None:
    first = build_where(_job_candidates(status="pending", assigned_to="u1"))
    second = build_where(_job_candidates(status="pending", assigned_to="u1"))
    assert (first.sql, first.params, first.next_index) == (second.sql, second.params, second.next_index)


def test_explicit_none_becomes_is_null_without_a_parameter() -> None:
    clause = build_where(_job_candidates(status="pending", assigned_to=None))
    assert clause.sql == "status = $1 AND assigned_to IS NULL"
    assert clause.params == ("pending",)
    assert clause.next_index == 2


def test_start_index_offsets_placeholders() -> None:
    clause = build_where(_job_candidates(priority="low"), start_index=4)
    assert clause.sql == "priority = $4"
    assert clause.next_index == 5


def test_tuple_column_is_or_grouped_with_one_parameter() -> None:
    clause = build_where(
        [Field("term", "%ada%", (Customer.first_name, Customer.last_name), op="ilike")]
    )
    assert clause.sql == "(first_name ILIKE $1 OR last_name ILIKE $1)"
    assert clause.params == ("%ada%",)


def test_range_operators() -> None:
    clause = build_where(
        [
            Field("date_from", "2026-01-01", Job.created_at, op="ge"),
            Field("date_to", "2026-02-01", Job.created_at, op="le"),
        ]
    )
    assert clause.sql == "created_at >= $1 AND created_at <= $2"


def test_unknown_operator_is_rejected() -> None:
    with pytest.raises(InvalidArgumentError):
        build_where([Field("status", "x", Job.status, op="between")])


def test_no_candidates_leaves_statement_untouched() -> None:
    clause = build_where(_job_candidates())
    assert clause.sql == ""
    assert clause.params == ()
    stmt = select(Job)
    assert clause.apply(stmt) is stmt


def test_build_set_requires_at_least_one_field() -> None:
    with pytest.raises(InvalidArgumentError, match="no valid fields to update"):
        build_set([Field("name", UNSET, None), Field("email", UNSET, None)])


def test_patch_fields_keep_explicit_null_and_declaration_order() -> None:
    patch = CustomerUpdate(email=None, first_name="Grace")
    values = build_set(patch_fields(patch, ("first_name", "email", "phone")))
    assert list(values) == ["first_name", "email"]
    assert values["email"] is None


def test_patch_fields_ignore_columns_outside_the_allow_list() -> None:
    patch = CustomerUpdate(notes="vip")
    with pytest.raises(InvalidArgumentError):
        build_set(patch_fields(patch, ("first_name",)))


def test_fields_from_model_only_uses_fields_the_caller_set() -> None:
    filters = JobFilters(status="pending", assigned_to=None)
    fields = fields_from_model(
        filters,
        {"status": Job.status, "assigned_to": Job.assigned_to, "priority": Job.priority},
    )
    assert [f.value for f in fields] == ["pending", None, UNSET]


def test_unset_is_a_falsy_singleton() -> None:
    assert not UNSET
    assert repr(UNSET) == "UNSET"
    assert type(UNSET)() is UNSET


def test_paginate_applies_limit_and_offset() -> None:
    stmt = paginate(select(Job), limit=10, offset=20)
    compiled = stmt.compile(compile_kwargs={"literal_binds": True})
    rendered = str(compiled)
    assert "LIMIT 10" in rendered
    assert "OFFSET 20" in rendered
