# fleet_integrity/services/record_store.py
"""
Record Store Gateway.
Thin typed access to the relational store: list / get / insert / update keyed
by entity id, with field-equality filters and single-column ordering.
Every write commits on its own; there are no multi-entity transactions.
SQLAlchemy failures are rolled back and re-raised as RecordStoreError.
"""

from typing import Any, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from fleet_integrity.utils.logger import get_logger

logger = get_logger(__name__)


class RecordStoreError(Exception):
    """A read or write against the record store failed."""


class RecordNotFoundError(RecordStoreError):
    def __init__(self, model, record_id):
        super().__init__(f"{model.__name__} {record_id} not found")
        self.model = model
        self.record_id = record_id


class RecordStore:
    def __init__(self, db: Session):
        self.db = db

    def list(
        self,
        model,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list:
        """Fetch records of `model`. A None filter value matches NULL."""
        try:
            q = self.db.query(model)
            if filters:
                q = q.filter_by(**filters)
            if order_by:
                column = getattr(model, order_by)
                q = q.order_by(column.desc() if descending else column.asc())
            if limit:
                q = q.limit(limit)
            return q.all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordStoreError(f"list {model.__name__} failed: {e}") from e

    def get(self, model, record_id) -> Optional[Any]:
        try:
            return self.db.get(model, record_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordStoreError(f"get {model.__name__} {record_id} failed: {e}") from e

    def insert(self, record):
        """Persist a new record and return it with its generated id."""
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            return record
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordStoreError(f"insert {type(record).__name__} failed: {e}") from e

    def update(self, model, record_id, patch: dict):
        """Apply `patch` to one record. Raises RecordNotFoundError if it does not exist."""
        record = self.get(model, record_id)
        if record is None:
            raise RecordNotFoundError(model, record_id)
        try:
            for field, value in patch.items():
                setattr(record, field, value)
            self.db.commit()
            self.db.refresh(record)
            return record
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordStoreError(f"update {model.__name__} {record_id} failed: {e}") from e

    def sibling(self) -> "RecordStore":
        """A store on a fresh session bound to the same engine, for use from a worker thread."""
        return RecordStore(Session(bind=self.db.get_bind()))

    def close(self):
        self.db.close()
