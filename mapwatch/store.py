"""MapWatch — Document Store.

Thin document-style layer over SQLModel tables: upsert by primary key, bulk
writes with per-record failure reporting, keyset scrolling over whole
tables, and the handful of aggregations the workers need.

Filters are plain SQLAlchemy expressions, e.g.
``store.scroll_all(MetricSample, MetricSample.timestamp < cutoff)``.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, Field
from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from mapwatch.core.logging import get_logger

logger = get_logger("store")

ModelT = TypeVar("ModelT", bound=SQLModel)

AGGREGATES = {
    "max": func.max,
    "min": func.min,
    "avg": func.avg,
    "sum": func.sum,
    "count": func.count,
}


class StoreUnavailableError(Exception):
    """The store cannot be reached at all. Systemic, stops the calling worker."""


class BulkResult(BaseModel):
    """Outcome of a bulk write. Successful records are never rolled back."""

    written: int = 0
    failed: Dict[str, str] = Field(default_factory=dict)

    def merge(self, other: "BulkResult") -> None:
        self.written += other.written
        self.failed.update(other.failed)


def _pk_column(model: Type[SQLModel]):
    return list(model.__table__.primary_key.columns)[0]


def _identity(record: SQLModel) -> str:
    return str(getattr(record, _pk_column(type(record)).name))


def _is_connection_error(exc: SQLAlchemyError) -> bool:
    return isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )


class DocumentStore:
    """Upsert-by-id store over a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def session(self) -> Session:
        return Session(self.engine)

    # ── Writes ──

    def upsert(self, record: SQLModel) -> None:
        with self.session() as session:
            session.merge(record)
            session.commit()

    def bulk_upsert(self, records: Sequence[SQLModel]) -> BulkResult:
        """Upsert many records.

        The batch is tried in one transaction first; if it fails, each record
        is retried on its own so one bad record cannot sink its neighbours.
        """
        if not records:
            return BulkResult()
        try:
            with self.session() as session:
                for record in records:
                    session.merge(record)
                session.commit()
            return BulkResult(written=len(records))
        except SQLAlchemyError as e:
            if _is_connection_error(e) and not self.ping():
                raise StoreUnavailableError(str(e)) from e
            logger.warning(f"Bulk write of {len(records)} records failed, retrying individually: {e}")

        result = BulkResult()
        for record in records:
            try:
                self.upsert(record)
                result.written += 1
            except SQLAlchemyError as e:
                result.failed[_identity(record)] = str(e).splitlines()[0]
        for record_id, error in result.failed.items():
            logger.error(f"Write failed for {record_id}: {error}")
        return result

    def insert_many(self, records: Sequence[SQLModel]) -> int:
        """Append records with generated keys (event logs)."""
        if not records:
            return 0
        with self.session() as session:
            session.add_all(records)
            session.commit()
        return len(records)

    def delete(self, model: Type[SQLModel], record_id: Any) -> bool:
        with self.session() as session:
            record = session.get(model, record_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    def bulk_delete(self, model: Type[SQLModel], ids: Sequence[Any]) -> int:
        if not ids:
            return 0
        pk = _pk_column(model)
        with self.session() as session:
            result = session.execute(delete(model).where(pk.in_(list(ids))))
            session.commit()
            return result.rowcount or 0

    def replace_all(self, model: Type[SQLModel], records: Sequence[SQLModel]) -> int:
        """Swap a whole table's contents in one transaction."""
        with self.session() as session:
            session.execute(delete(model))
            session.add_all(records)
            session.commit()
        return len(records)

    # ── Reads ──

    def get(self, model: Type[ModelT], record_id: Any) -> Optional[ModelT]:
        with self.session() as session:
            return session.get(model, record_id)

    def exists(self, model: Type[SQLModel], record_id: Any) -> bool:
        return self.get(model, record_id) is not None

    def find(
        self,
        model: Type[ModelT],
        *criteria,
        order_by=None,
        limit: Optional[int] = None,
    ) -> List[ModelT]:
        with self.session() as session:
            stmt = select(model).where(*criteria)
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(session.exec(stmt).all())

    def latest(self, model: Type[ModelT], order_field, *criteria) -> Optional[ModelT]:
        """Newest record by ``order_field`` matching the criteria."""
        rows = self.find(model, *criteria, order_by=order_field.desc(), limit=1)
        return rows[0] if rows else None

    def earliest(self, model: Type[ModelT], order_field, *criteria) -> Optional[ModelT]:
        rows = self.find(model, *criteria, order_by=order_field.asc(), limit=1)
        return rows[0] if rows else None

    def count(self, model: Type[SQLModel], *criteria) -> int:
        with self.session() as session:
            stmt = select(func.count()).select_from(model).where(*criteria)
            return int(session.exec(stmt).one())

    def scroll_all(
        self,
        model: Type[ModelT],
        *criteria,
        batch_size: int = 1000,
    ) -> Iterator[ModelT]:
        """Lazily yield every matching record, one keyset page at a time.

        Each page uses its own session, so callers may delete or rewrite
        records of the same table between pages.
        """
        pk = _pk_column(model)
        last = None
        while True:
            with self.session() as session:
                stmt = select(model).where(*criteria)
                if last is not None:
                    stmt = stmt.where(pk > last)
                page = list(session.exec(stmt.order_by(pk).limit(batch_size)).all())
            if not page:
                return
            yield from page
            last = getattr(page[-1], pk.name)
            if len(page) < batch_size:
                return

    def scroll_batches(
        self,
        model: Type[ModelT],
        *criteria,
        batch_size: int = 1000,
    ) -> Iterator[List[ModelT]]:
        batch: List[ModelT] = []
        for record in self.scroll_all(model, *criteria, batch_size=batch_size):
            batch.append(record)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def aggregate(self, model: Type[SQLModel], field, op: str, *criteria) -> Optional[float]:
        """Single-value aggregation (max / min / avg / sum / count) over a column."""
        if op not in AGGREGATES:
            raise ValueError(f"Unsupported aggregation: {op}")
        with self.session() as session:
            stmt = select(AGGREGATES[op](field)).select_from(model).where(*criteria)
            value = session.exec(stmt).one()
        return None if value is None else float(value)

    def terms(
        self,
        model: Type[SQLModel],
        key_field,
        metric_field,
        op: str,
        *criteria,
        limit: Optional[int] = None,
    ) -> List[Tuple[str, float]]:
        """Group by ``key_field`` and aggregate ``metric_field``.

        Ordered by the aggregate descending, then by key ascending, so equal
        values always come back in the same order.
        """
        if op not in AGGREGATES:
            raise ValueError(f"Unsupported aggregation: {op}")
        agg = AGGREGATES[op](metric_field).label("value")
        with self.session() as session:
            stmt = (
                select(key_field, agg)
                .select_from(model)
                .where(*criteria)
                .group_by(key_field)
                .order_by(agg.desc(), key_field.asc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = session.exec(stmt).all()
        return [(key, float(value)) for key, value in rows if value is not None]

    def ids(self, model: Type[SQLModel], *criteria, batch_size: int = 10000) -> Iterable[str]:
        """Scroll only the primary keys of a table."""
        pk = _pk_column(model)
        last = None
        while True:
            with self.session() as session:
                stmt = select(pk).where(*criteria)
                if last is not None:
                    stmt = stmt.where(pk > last)
                page = list(session.exec(stmt.order_by(pk).limit(batch_size)).all())
            if not page:
                return
            yield from page
            last = page[-1]
            if len(page) < batch_size:
                return

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return True
        except SQLAlchemyError:
            return False
