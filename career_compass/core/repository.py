"""
User-scoped data access.

Every entity in the application is owned by exactly one user. Rather than
repeating a `user_id == ...` predicate in each query, services go through a
`UserScopedRepository` bound to the authenticated user: reads, writes and
counts are always filtered by the owner column, so a query that forgets the
owner cannot be written through this API.
"""
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Table, and_, func, insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement


class UserScopedRepository:
    def __init__(self, db: Session, user_id: str, *, owner_column: str = "user_id"):
        if not user_id:
            raise ValueError("UserScopedRepository requires a user_id")
        self.db = db
        self.user_id = user_id
        self.owner_column = owner_column

    def _owner(self, table: Table) -> ColumnElement:
        return table.c[self.owner_column] == self.user_id

    def _where(self, table: Table, criteria: Sequence[ColumnElement]) -> ColumnElement:
        return and_(self._owner(table), *criteria)

    def fetch_one(self, table: Table, *criteria: ColumnElement) -> Optional[RowMapping]:
        row = self.db.execute(
            select(table).where(self._where(table, criteria)).limit(1)
        ).mappings().first()
        return row

    def fetch_all(
        self,
        table: Table,
        *criteria: ColumnElement,
        order_by: Sequence[ColumnElement] = (),
        limit: Optional[int] = None,
    ) -> List[RowMapping]:
        stmt = select(table).where(self._where(table, criteria))
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).mappings().all())

    def count(self, table: Table, *criteria: ColumnElement) -> int:
        return self.db.execute(
            select(func.count()).select_from(table).where(self._where(table, criteria))
        ).scalar() or 0

    def insert(self, table: Table, values: Dict[str, Any]) -> RowMapping:
        """Insert a row owned by the bound user and return it."""
        payload = dict(values)
        payload[self.owner_column] = self.user_id
        return self.db.execute(
            insert(table).values(**payload).returning(table)
        ).mappings().one()

    def update(self, table: Table, values: Dict[str, Any], *criteria: ColumnElement) -> List[RowMapping]:
        """Update owned rows matching `criteria`; returns the updated rows."""
        if self.owner_column in values:
            raise ValueError("owner column cannot be reassigned")
        return list(
            self.db.execute(
                update(table).where(self._where(table, criteria)).values(**values).returning(table)
            ).mappings().all()
        )
