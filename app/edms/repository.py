"""
Shared repository helpers: id lookups, typed ordering and pagination.

Each module declares its own filter dataclass and order-by field map; these
helpers turn them into SQLAlchemy statements after validating them.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from flask import current_app, has_app_context
from sqlalchemy import Select, func, select
from sqlalchemy.orm import InstrumentedAttribute, Session

from app.edms.errors import NotFoundError, ValidationError

T = TypeVar("T")

# Soft-delete filter values
TERMINATED_ACTIVE = "ACTIVE"
TERMINATED_DISABLED = "DISABLED"
TERMINATED_ALL = "ALL"
TERMINATED_FILTERS = (TERMINATED_ACTIVE, TERMINATED_DISABLED, TERMINATED_ALL)

MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class Pagination:
    skip: int = 0
    take: int = 10

    def validated(self) -> "Pagination":
        if self.skip < 0:
            raise ValidationError("skip must be >= 0.")
        if self.take < 1 or self.take > MAX_PAGE_SIZE:
            raise ValidationError(f"take must be between 1 and {MAX_PAGE_SIZE}.")
        return self


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: str = "ASC"


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 0
    total_items: int = 0
    has_next: bool = False
    has_prev: bool = False


def get_or_raise(
    s: Session,
    model: type[T],
    entity_id: int,
    *,
    lock: bool = False,
    message: str | None = None,
) -> T:
    """
    Fetch by primary key; `lock` takes a row lock for the rest of the transaction
    and refreshes the row (and its eager collections) from the database.
    """
    if lock:
        # Pending changes must reach the database before the refresh overwrites them.
        s.flush()
        pk = model.__mapper__.primary_key[0]  # type: ignore[attr-defined]
        stmt = select(model).where(pk == entity_id).with_for_update().execution_options(populate_existing=True)
        obj = s.execute(stmt).scalar_one_or_none()
    else:
        obj = s.get(model, entity_id)
    if obj is None:
        raise NotFoundError(message or f"{model.__name__} {entity_id} not found.")
    return obj


def apply_order_by(
    stmt: Select[Any],
    order_by: OrderBy | None,
    field_map: dict[str, InstrumentedAttribute[Any]],
    default: list[Any],
) -> Select[Any]:
    if order_by is None:
        return stmt.order_by(*default)
    column = field_map.get((order_by.field or "").upper())
    if column is None:
        raise ValidationError(f"Unsupported order field: {order_by.field!r}.", allowed=sorted(field_map))
    direction = (order_by.direction or "ASC").upper()
    if direction not in ("ASC", "DESC"):
        raise ValidationError(f"Unsupported order direction: {order_by.direction!r}.")
    return stmt.order_by(column.desc() if direction == "DESC" else column.asc())


def default_pagination() -> Pagination:
    if has_app_context():
        return Pagination(take=int(current_app.config.get("DEFAULT_PAGE_SIZE") or 10))
    return Pagination()


def paginate(s: Session, stmt: Select[Any], pagination: Pagination | None) -> Page[Any]:
    p = (pagination or default_pagination()).validated()
    total_items = s.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    items = list(s.execute(stmt.offset(p.skip).limit(p.take)).scalars().all())
    return Page(
        items=items,
        current_page=p.skip // p.take + 1,
        total_pages=math.ceil(total_items / p.take),
        total_items=total_items,
        has_next=p.skip + p.take < total_items,
        has_prev=p.skip > 0,
    )


def terminated_clause(column: InstrumentedAttribute[Any], terminated_filter: str | None) -> Any | None:
    if terminated_filter is None or terminated_filter == TERMINATED_ALL:
        return None
    if terminated_filter == TERMINATED_ACTIVE:
        return column.is_(None)
    if terminated_filter == TERMINATED_DISABLED:
        return column.is_not(None)
    raise ValidationError(f"Unsupported terminated filter: {terminated_filter!r}.")
