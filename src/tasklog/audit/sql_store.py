"""Relational fallback tier backed by the task_logs_fallback table."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

import logging

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import (
    DataError,
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import JSON

from tasklog.audit.schemas import (
    LogCriteria,
    LogEntry,
    LogPage,
    LogQuery,
    SortDirection,
    TierResult,
)
from tasklog.audit.store import QueryableLogStore, classify_store_error
from tasklog.common.constants import TierConstants
from tasklog.common.exceptions import PermanentStoreError, StoreError, TransientStoreError

logger = logging.getLogger(__name__)

_log_json_type = JSONB().with_variant(JSON(), "sqlite")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class TaskLogFallbackModel(Base):
    """Database representation of a task log written while the primary tier was down."""

    __tablename__ = TierConstants.FALLBACK_TABLE

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    old_data = Column(_log_json_type, nullable=True)
    new_data = Column(_log_json_type, nullable=True)
    user_id = Column(Integer, nullable=True)
    user_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    request_id = Column(String(100), nullable=True)
    original_error = Column(Text, nullable=True)
    # Stored as naive UTC for portability across dialects
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_task_logs_fallback_task_created", "task_id", "created_at"),
    )


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def _to_aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlLogStore(QueryableLogStore):
    """SQLAlchemy store for the secondary tier.

    Filtering, counting, ordering and paging all run in SQL.
    """

    tier = TierResult.SECONDARY

    def __init__(self, database_url: str, create_tables: bool = True, echo: bool = False):
        self.database_url = database_url

        engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True, "echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url == "sqlite://":
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        if create_tables:
            self.initialize()

        logger.info(f"SQL fallback store initialized: {self.engine.url.render_as_string(hide_password=True)}")

    def initialize(self) -> None:
        """Ensure the fallback table and its indexes exist."""
        try:
            Base.metadata.create_all(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise self._classify(e) from e

    # ========== ERROR MAPPING ==========

    def _classify(self, exc: Exception) -> StoreError:
        details = {"exception": exc.__class__.__name__}
        if isinstance(exc, (DisconnectionError, PoolTimeoutError)):
            return TransientStoreError(str(exc), tier=self.name, details=details)
        if isinstance(exc, (IntegrityError, DataError)):
            return PermanentStoreError(str(exc), tier=self.name, details=details)
        if isinstance(exc, OperationalError) and exc.connection_invalidated:
            return TransientStoreError(str(exc), tier=self.name, details=details)
        return classify_store_error(exc, tier=self.name)

    # ========== MAPPING ==========

    @staticmethod
    def _apply_entry_to_model(model: TaskLogFallbackModel, entry: LogEntry) -> None:
        model.task_id = entry.task_id
        model.action = entry.action.value
        model.old_data = entry.old_data
        model.new_data = entry.new_data
        model.user_id = entry.user_id
        model.user_name = entry.user_name
        model.description = entry.description
        model.ip_address = entry.ip_address
        model.user_agent = entry.user_agent
        model.request_id = entry.request_id
        model.original_error = entry.original_error
        model.created_at = _to_naive_utc(entry.created_at)
        model.updated_at = _to_naive_utc(entry.updated_at)

    def _to_entry(self, model: TaskLogFallbackModel) -> LogEntry:
        return LogEntry(
            id=str(model.id),
            task_id=model.task_id,
            action=model.action,
            old_data=model.old_data,
            new_data=model.new_data,
            user_id=model.user_id,
            user_name=model.user_name,
            description=model.description,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            request_id=model.request_id,
            original_error=model.original_error,
            created_at=_to_aware_utc(model.created_at),
            updated_at=_to_aware_utc(model.updated_at),
            tier=self.tier,
        )

    def _to_entries(self, models: Iterable[TaskLogFallbackModel]) -> List[LogEntry]:
        entries: List[LogEntry] = []
        for model in models:
            try:
                entries.append(self._to_entry(model))
            except ValueError as e:
                logger.warning(f"Skipping malformed fallback row {model.id}: {e}")
        return entries

    @staticmethod
    def _filtered(statement, criteria: LogCriteria):
        if criteria.task_id is not None:
            statement = statement.where(TaskLogFallbackModel.task_id == criteria.task_id)
        if criteria.actions:
            statement = statement.where(
                TaskLogFallbackModel.action.in_(sorted(a.value for a in criteria.actions))
            )
        if criteria.user_id is not None:
            statement = statement.where(TaskLogFallbackModel.user_id == criteria.user_id)
        if criteria.start is not None:
            statement = statement.where(TaskLogFallbackModel.created_at >= _to_naive_utc(criteria.start))
        if criteria.end is not None:
            statement = statement.where(TaskLogFallbackModel.created_at < _to_naive_utc(criteria.end))
        return statement

    # ========== WRITES ==========

    def append_entry(self, entry: LogEntry) -> LogEntry:
        model = TaskLogFallbackModel()
        try:
            self._apply_entry_to_model(model, entry)
            with self.SessionLocal() as session:
                session.add(model)
                session.commit()
                session.refresh(model)
                return self._to_entry(model)
        except Exception as e:
            error = self._classify(e)
            logger.error(f"Fallback insert failed ({error.code}): {e}")
            raise error from e

    def delete_entries(self, criteria: LogCriteria) -> int:
        statement = self._filtered(delete(TaskLogFallbackModel), criteria)
        try:
            with self.SessionLocal() as session:
                result = session.execute(statement)
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._classify(e) from e

    # ========== READS ==========

    def get_entry(self, entry_id: str) -> Optional[LogEntry]:
        try:
            key = int(entry_id)
        except (TypeError, ValueError):
            return None
        try:
            with self.SessionLocal() as session:
                model = session.get(TaskLogFallbackModel, key)
        except SQLAlchemyError as e:
            raise self._classify(e) from e
        if model is None:
            return None
        entries = self._to_entries([model])
        return entries[0] if entries else None

    def iter_entries(self, criteria: Optional[LogCriteria] = None) -> Iterator[LogEntry]:
        statement = self._filtered(select(TaskLogFallbackModel), criteria or LogCriteria())
        try:
            with self.SessionLocal() as session:
                models = session.scalars(statement.order_by(TaskLogFallbackModel.id)).all()
        except SQLAlchemyError as e:
            raise self._classify(e) from e
        yield from self._to_entries(models)

    def query(self, query: LogQuery) -> LogPage:
        column = getattr(TaskLogFallbackModel, query.sort_field.value)
        # NULLs sort after values ascending and before them descending on every tier
        ordering = (
            column.desc().nulls_first()
            if query.direction == SortDirection.DESC
            else column.asc().nulls_last()
        )
        tiebreak = (
            TaskLogFallbackModel.id.desc()
            if query.direction == SortDirection.DESC
            else TaskLogFallbackModel.id.asc()
        )

        count_statement = self._filtered(
            select(func.count()).select_from(TaskLogFallbackModel), query.criteria
        )
        page_statement = (
            self._filtered(select(TaskLogFallbackModel), query.criteria)
            .order_by(ordering, tiebreak)
            .offset(query.offset)
            .limit(query.per_page)
        )

        try:
            with self.SessionLocal() as session:
                total = session.scalar(count_statement) or 0
                models = session.scalars(page_statement).all()
                entries = self._to_entries(models)
        except SQLAlchemyError as e:
            raise self._classify(e) from e

        return LogPage(entries=entries, total=total, page=query.page, per_page=query.per_page)

