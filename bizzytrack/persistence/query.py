from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Iterable, Mapping

from pydantic import BaseModel
from sqlalchemy import Select, and_, or_
from sqlalchemy.sql.elements import ColumnElement

from bizzytrack.core.errors import InvalidArgumentError


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Marks a candidate the caller did not supply; None stays a real "null" intent.
UNSET: Final = _Unset()

_OPERATORS = {
    "eq": "=",
    "ge": ">=",
    "le": "<=",
    "ilike": "ILIKE",
}


@dataclass(frozen=True)
class Field:
    name: str
    value: Any
    # A tuple of columns is OR-ed together (used for free-text search).
    column: Any
    op: str = "eq"


@dataclass(frozen=True)
class Clause:
    sql: str
    params: tuple[Any, ...]
    next_index: int
    conditions: tuple[ColumnElement[bool], ...]

    def apply(self, stmt: Select) -> Select:
        # Attach the conditions after the tenant predicate already on the statement.
        if not self.conditions:
            return stmt
        return stmt.where(*self.conditions)


def _column_label(column: Any) -> str:
    return getattr(column, "key", None) or str(column)


def _condition(column: Any, op: str, value: Any) -> ColumnElement[bool]:
    if op == "eq":
        return column.is_(None) if value is None else column == value
    if op == "ge":
        return column >= value
    if op == "le":
        return column <= value
    if op == "ilike":
        return column.ilike(value)
    raise InvalidArgumentError(f"Unsupported filter operator: {op}")


def build_where(fields: Iterable[Field], *, start_index: int = 1) -> Clause:
    """Collect filter conditions for every supplied candidate.

    Candidates whose value is ``UNSET`` are skipped; an explicit ``None``
    becomes an ``IS NULL`` test. Inclusion follows the order of ``fields`` so
    the rendered fragment and parameter order are stable across calls.
    """
    fragments: list[str] = []
    params: list[Any] = []
    conditions: list[ColumnElement[bool]] = []
    index = start_index
    for field in fields:
        if field.value is UNSET:
            continue
        if field.op not in _OPERATORS:
            raise InvalidArgumentError(f"Unsupported filter operator: {field.op}")
        columns = field.column if isinstance(field.column, tuple) else (field.column,)
        if field.op == "eq" and field.value is None:
            fragments.append(" AND ".join(f"{_column_label(c)} IS NULL" for c in columns))
            conditions.append(and_(*(_condition(c, "eq", None) for c in columns)))
            continue
        placeholder = f"${index}"
        rendered = [f"{_column_label(c)} {_OPERATORS[field.op]} {placeholder}" for c in columns]
        if len(rendered) > 1:
            fragments.append("(" + " OR ".join(rendered) + ")")
            conditions.append(or_(*(_condition(c, field.op, field.value) for c in columns)))
        else:
            fragments.append(rendered[0])
            conditions.append(_condition(columns[0], field.op, field.value))
        params.append(field.value)
        index += 1
    return Clause(
        sql=" AND ".join(fragments),
        params=tuple(params),
        next_index=index,
        conditions=tuple(conditions),
    )


def build_set(fields: Iterable[Field]) -> dict[str, Any]:
    # Keep only supplied fields; None is a deliberate "set to null".
    values: dict[str, Any] = {}
    for field in fields:
        if field.value is UNSET:
            continue
        values[field.name] = field.value
    if not values:
        raise InvalidArgumentError("no valid fields to update")
    return values


def fields_from_model(
    payload: BaseModel | None,
    columns: Mapping[str, Any],
    *,
    ops: Mapping[str, str] | None = None,
) -> list[Field]:
    # Turn a pydantic payload into candidates; fields the caller never set stay UNSET.
    ops = ops or {}
    provided = payload.model_fields_set if payload is not None else set()
    candidates: list[Field] = []
    for name, column in columns.items():
        value = getattr(payload, name) if payload is not None and name in provided else UNSET
        candidates.append(Field(name=name, value=value, column=column, op=ops.get(name, "eq")))
    return candidates


def patch_fields(payload: BaseModel, allowed: Iterable[str]) -> list[Field]:
    # Patch candidates follow the payload's declaration order, restricted to mutable columns.
    allowed_set = set(allowed)
    provided = payload.model_fields_set
    return [
        Field(
            name=name,
            value=getattr(payload, name) if name in provided else UNSET,
            column=None,
        )
        for name in type(payload).model_fields
        if name in allowed_set
    ]


def paginate(stmt: Select, *, limit: int | None = None, offset: int | None = None) -> Select:
    # Pagination is always the last thing applied to a statement.
    if limit is not None:
        stmt = stmt.limit(max(0, int(limit)))
    if offset is not None:
        stmt = stmt.offset(max(0, int(offset)))
    return stmt
