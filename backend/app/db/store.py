"""
Adaptateur "document store".

Le moteur de réconciliation ne parle qu'à cette interface :
create / get / list / update / delete d'une ligne, sans transaction
multi-lignes. Chaque appel est un point de suspension indépendant.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.base import Base
from backend.app.db.models.core_types import (
    PRODUCTS,
    PRODUCT_COMPONENTS,
    PACKAGING_RECORDS,
    PACKAGING_ITEMS,
    AUDIT_LOGS,
)
from backend.app.db.models.models_v1 import (
    Product,
    ProductComponent,
    PackagingRecord,
    PackagingItem,
    AuditLog,
)

# Limite du prédicat "is one of" (nombre de valeurs par requête)
ID_QUERY_LIMIT = 60

TABLE_MODELS: dict[str, type[Base]] = {
    PRODUCTS: Product,
    PRODUCT_COMPONENTS: ProductComponent,
    PACKAGING_RECORDS: PackagingRecord,
    PACKAGING_ITEMS: PackagingItem,
    AUDIT_LOGS: AuditLog,
}


class StoreError(Exception):
    pass


class RowNotFound(StoreError, LookupError):
    def __init__(self, table: str, row_id: str):
        super().__init__(f"Row not found in {table} (ID: {row_id})")
        self.table = table
        self.row_id = row_id


class DuplicateRow(StoreError):
    pass


@dataclass(frozen=True)
class Where:
    """Scalaire -> égalité ; liste/tuple/set -> "is one of"."""

    field: str
    value: Any

    @property
    def is_one_of(self) -> bool:
        return isinstance(self.value, (list, tuple, set, frozenset))


@dataclass
class ListResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


class DocumentStore(Protocol):
    async def create_row(self, table: str, data: dict[str, Any]) -> dict[str, Any]: ...

    async def get_row(self, table: str, row_id: str) -> dict[str, Any]: ...

    async def list_rows(
        self,
        table: str,
        where: Sequence[Where] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> ListResult: ...

    async def update_row(self, table: str, row_id: str, patch: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_row(self, table: str, row_id: str) -> None: ...


def check_one_of_limit(where: Iterable[Where], limit: int = ID_QUERY_LIMIT) -> None:
    for cond in where:
        if cond.is_one_of and len(cond.value) > limit:
            raise ValueError(
                f"'is one of' predicate on {cond.field} accepts at most {limit} values (got {len(cond.value)})"
            )


def to_row(obj: Base) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for attr in obj.__mapper__.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, enum.Enum):
            value = value.value
        row[attr.key] = value
    return row


class SqlDocumentStore:
    """
    Implémentation SQLAlchemy (async) du store.

    Une session courte par appel, commit immédiat : aucune atomicité
    entre deux appels, exactement comme un store documentaire.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession], *, id_query_limit: int = ID_QUERY_LIMIT):
        self._sessions = sessions
        self.id_query_limit = id_query_limit

    @staticmethod
    def _model(table: str) -> type[Base]:
        try:
            return TABLE_MODELS[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    async def create_row(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        async with self._sessions() as session:
            obj = model(**data)
            session.add(obj)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRow(f"Duplicate row in {table}: {exc.orig}") from exc
            return to_row(obj)

    async def get_row(self, table: str, row_id: str) -> dict[str, Any]:
        model = self._model(table)
        async with self._sessions() as session:
            obj = await session.get(model, row_id)
            if obj is None:
                raise RowNotFound(table, row_id)
            return to_row(obj)

    async def list_rows(
        self,
        table: str,
        where: Sequence[Where] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> ListResult:
        model = self._model(table)
        check_one_of_limit(where, self.id_query_limit)

        stmt = select(model)
        for cond in where:
            column = getattr(model, cond.field)
            if cond.is_one_of:
                stmt = stmt.where(column.in_(list(cond.value)))
            else:
                stmt = stmt.where(column == cond.value)

        async with self._sessions() as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))

            if order_by is not None:
                column = getattr(model, order_by)
                stmt = stmt.order_by(column.desc() if descending else column.asc())
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)

            rows = (await session.execute(stmt)).scalars().all()
            return ListResult(rows=[to_row(r) for r in rows], total=int(total or 0))

    async def update_row(self, table: str, row_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        model = self._model(table)
        async with self._sessions() as session:
            obj = await session.get(model, row_id)
            if obj is None:
                raise RowNotFound(table, row_id)
            for key, value in patch.items():
                setattr(obj, key, value)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateRow(f"Duplicate row in {table}: {exc.orig}") from exc
            return to_row(obj)

    async def delete_row(self, table: str, row_id: str) -> None:
        model = self._model(table)
        async with self._sessions() as session:
            obj = await session.get(model, row_id)
            if obj is None:
                raise RowNotFound(table, row_id)
            await session.delete(obj)
            await session.commit()
