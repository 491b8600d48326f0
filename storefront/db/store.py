"""Table-level access used by the checkout and purchase pipeline.

Every write commits on its own so that a failure only affects the row being
written, and a failed read rolls the session back so later writes still work.
Duplicate keys surface as ``UniqueConstraintViolation`` so callers can branch
on them without inspecting driver messages.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.errors import PersistenceError, UniqueConstraintViolation
from storefront.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)

_UNIQUE_VIOLATION_SQLSTATE = "23505"
_SQLITE_UNIQUE_ERRORS = {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == _UNIQUE_VIOLATION_SQLSTATE

    error_name = getattr(orig, "sqlite_errorname", None)
    if error_name:
        return error_name in _SQLITE_UNIQUE_ERRORS

    # Older sqlite3 builds only expose the constraint kind in the message.
    message = str(orig)
    return "UNIQUE constraint failed" in message


class RecordStore(Generic[ModelT]):
    def __init__(self, db: Session, model: type[ModelT]):
        self.db = db
        self.model = model

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def get(self, record_id: str) -> ModelT | None:
        try:
            return self.db.get(self.model, record_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to read {self.table_name}") from exc

    def insert(self, row: ModelT) -> ModelT:
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_unique_violation(exc):
                raise UniqueConstraintViolation(
                    f"Duplicate row in {self.table_name}"
                ) from exc
            raise PersistenceError(f"Failed to insert into {self.table_name}") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to insert into {self.table_name}") from exc
        self.db.refresh(row)
        return row

    def update(self, record_id: str, **values: Any) -> ModelT | None:
        try:
            row = self.db.get(self.model, record_id)
            if row is None:
                return None
            for field, value in values.items():
                setattr(row, field, value)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_unique_violation(exc):
                raise UniqueConstraintViolation(
                    f"Duplicate row in {self.table_name}"
                ) from exc
            raise PersistenceError(f"Failed to update {self.table_name}") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to update {self.table_name}") from exc
        self.db.refresh(row)
        return row

    def delete(self, record_id: str) -> bool:
        try:
            row = self.db.get(self.model, record_id)
            if row is None:
                return False
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete from {self.table_name}") from exc
        return True

    def find_by(self, field: str, value: Any) -> list[ModelT]:
        column = getattr(self.model, field)
        try:
            return list(self.db.execute(select(self.model).where(column == value)).scalars().all())
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to query {self.table_name}") from exc

    def find_one(self, field: str, value: Any) -> ModelT | None:
        rows = self.find_by(field, value)
        return rows[0] if rows else None

    def delete_where(self, *criteria: Any) -> int:
        try:
            result = self.db.execute(delete(self.model).where(*criteria))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete from {self.table_name}") from exc
        return int(result.rowcount or 0)
