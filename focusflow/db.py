"""
Entity store for Projects, Goals and Tasks.

Two implementations share the ``DbClient`` protocol: a SQLAlchemy-backed
client (Postgres in production, SQLite in tests) and an in-memory client for
development. Rows are never removed; deletion writes ``deleted_at``.
"""

from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    ContextManager,
    Dict,
    Iterator,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Union,
)

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    case,
    create_engine,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from focusflow.errors import ConflictError, NotFoundError
from focusflow.types import EntityKind, Urgency


class OrderBy(NamedTuple):
    field: str
    descending: bool = False


@dataclass
class ProjectRecord:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


@dataclass
class GoalRecord:
    id: str
    project_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


@dataclass
class TaskRecord:
    id: str
    goal_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    completed: bool = False
    urgency: Urgency = Urgency.MEDIUM
    todays_focus: bool = False
    completed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


Record = Union[ProjectRecord, GoalRecord, TaskRecord]

RECORD_TYPES = {
    EntityKind.PROJECT: ProjectRecord,
    EntityKind.GOAL: GoalRecord,
    EntityKind.TASK: TaskRecord,
}

# Fields a caller may write through create/update.
WRITABLE_FIELDS = {
    EntityKind.PROJECT: {"name"},
    EntityKind.GOAL: {"name", "project_id"},
    EntityKind.TASK: {
        "name",
        "goal_id",
        "completed",
        "urgency",
        "todays_focus",
        "completed_at",
    },
}

PARENTS = {
    EntityKind.GOAL: ("project_id", EntityKind.PROJECT),
    EntityKind.TASK: ("goal_id", EntityKind.GOAL),
}


class EntityStore(Protocol):
    """Operations available on a store or on an open transaction."""

    clock: "Clock"

    def get(
        self, kind: EntityKind, entity_id: str, *, include_deleted: bool = False
    ) -> Optional[Record]:
        ...

    def list(
        self,
        kind: EntityKind,
        filters: Optional[Dict[str, Any]] = None,
        order: Sequence[OrderBy] = (),
        *,
        include_deleted: bool = False,
    ) -> list[Record]:
        ...

    def create(self, kind: EntityKind, values: Dict[str, Any]) -> Record:
        ...

    def update(self, kind: EntityKind, entity_id: str, values: Dict[str, Any]) -> Record:
        ...

    def soft_delete_cascade(self, kind: EntityKind, entity_id: str) -> datetime:
        ...

    def transaction(self) -> ContextManager["EntityStore"]:
        ...


class DbClient(EntityStore, Protocol):
    """Interface for the process-wide store handle."""

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        ...


def utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Clock:
    """Issues strictly increasing UTC timestamps so creation order is total."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        with self._lock:
            current = datetime.now(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


def _check_fields(kind: EntityKind, values: Dict[str, Any]) -> None:
    unknown = set(values) - WRITABLE_FIELDS[kind]
    if unknown:
        raise ValueError(f"Unknown {kind.value} fields: {sorted(unknown)}")


def _check_filters(kind: EntityKind, names) -> None:
    known = {f.name for f in fields(RECORD_TYPES[kind])}
    unknown = set(names) - known
    if unknown:
        raise ValueError(f"Cannot filter or order {kind.value} by {sorted(unknown)}")


def _normalize(kind: EntityKind, values: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(values)
    if kind is EntityKind.TASK and values.get("urgency") is not None:
        values["urgency"] = Urgency(values["urgency"])
    return values


def _sort_key(name: str):
    def key(record):
        value = getattr(record, name)
        if isinstance(value, Urgency):
            return value.rank
        return value

    return key


class InMemoryDbClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.tables: Dict[EntityKind, Dict[str, Record]] = {
            kind: {} for kind in EntityKind
        }
        self.clock = Clock()
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryDbClient"]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy(self.tables) if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    self.tables = snapshot
                raise
            finally:
                self._depth -= 1

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for table in self.tables.values():
                table.clear()

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def _live(self, kind: EntityKind, entity_id: str) -> Optional[Record]:
        record = self.tables[kind].get(entity_id)
        if record is None or record.deleted_at is not None:
            return None
        return record

    def _require_parent(self, kind: EntityKind, values: Dict[str, Any]) -> None:
        if kind not in PARENTS:
            return
        attr, parent_kind = PARENTS[kind]
        if attr in values and self._live(parent_kind, values[attr]) is None:
            raise NotFoundError(parent_kind.label, values[attr])

    def get(
        self, kind: EntityKind, entity_id: str, *, include_deleted: bool = False
    ) -> Optional[Record]:
        with self.transaction():
            record = self.tables[kind].get(entity_id)
            if record is None or (record.deleted_at is not None and not include_deleted):
                return None
            return replace(record)

    def list(
        self,
        kind: EntityKind,
        filters: Optional[Dict[str, Any]] = None,
        order: Sequence[OrderBy] = (),
        *,
        include_deleted: bool = False,
    ) -> list[Record]:
        filters = filters or {}
        _check_filters(kind, list(filters) + [o.field for o in order])
        with self.transaction():
            rows = [
                replace(record)
                for record in self.tables[kind].values()
                if (include_deleted or record.deleted_at is None)
                and all(getattr(record, k) == v for k, v in filters.items())
            ]
        # Stable sorts applied from the least significant key.
        for ordering in reversed(order):
            rows.sort(key=_sort_key(ordering.field), reverse=ordering.descending)
        return rows

    def create(self, kind: EntityKind, values: Dict[str, Any]) -> Record:
        _check_fields(kind, values)
        values = _normalize(kind, values)
        with self.transaction():
            self._require_parent(kind, values)
            now = self.clock.now()
            record = RECORD_TYPES[kind](
                id=uuid.uuid4().hex, created_at=now, updated_at=now, **values
            )
            self.tables[kind][record.id] = record
            return replace(record)

    def update(self, kind: EntityKind, entity_id: str, values: Dict[str, Any]) -> Record:
        _check_fields(kind, values)
        values = _normalize(kind, values)
        with self.transaction():
            record = self._live(kind, entity_id)
            if record is None:
                raise NotFoundError(kind.label, entity_id)
            self._require_parent(kind, values)
            for key, value in values.items():
                setattr(record, key, value)
            record.updated_at = self.clock.now()
            return replace(record)

    def soft_delete_cascade(self, kind: EntityKind, entity_id: str) -> datetime:
        with self.transaction():
            record = self._live(kind, entity_id)
            if record is None:
                raise NotFoundError(kind.label, entity_id)
            now = self.clock.now()
            doomed = [record]
            if kind is EntityKind.PROJECT:
                goals = [
                    g for g in self.tables[EntityKind.GOAL].values()
                    if g.project_id == entity_id and g.deleted_at is None
                ]
                goal_ids = {g.id for g in goals}
                doomed.extend(goals)
            elif kind is EntityKind.GOAL:
                goal_ids = {entity_id}
            else:
                goal_ids = set()
            doomed.extend(
                t for t in self.tables[EntityKind.TASK].values()
                if t.goal_id in goal_ids and t.deleted_at is None
            )
            for item in doomed:
                item.deleted_at = now
            return now


Base = declarative_base()


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)


class GoalRow(Base):
    __tablename__ = "goals"

    id = Column(String, primary_key=True)
    project_id = Column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True)
    goal_id = Column(
        String, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(500), nullable=False)
    completed = Column(Boolean, nullable=False, default=False, index=True)
    urgency = Column(String, nullable=False, default=Urgency.MEDIUM.value, index=True)
    todays_focus = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)


ROW_TYPES = {
    EntityKind.PROJECT: ProjectRow,
    EntityKind.GOAL: GoalRow,
    EntityKind.TASK: TaskRow,
}

_DATETIME_FIELDS = {"created_at", "updated_at", "deleted_at", "completed_at"}


def _to_record(kind: EntityKind, row) -> Record:
    values = {}
    for f in fields(RECORD_TYPES[kind]):
        value = getattr(row, f.name)
        if f.name in _DATETIME_FIELDS:
            value = utc(value)
        elif f.name == "urgency":
            value = Urgency(value)
        values[f.name] = value
    return RECORD_TYPES[kind](**values)


def _to_column_values(values: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(values)
    if isinstance(values.get("urgency"), Urgency):
        values["urgency"] = values["urgency"].value
    return values


def _order_clause(row_type, ordering: OrderBy):
    column = getattr(row_type, ordering.field)
    if ordering.field == "urgency":
        column = case(
            {u.value: u.rank for u in Urgency}, value=column, else_=-1
        )
    return column.desc() if ordering.descending else column.asc()


class SqlTransaction:
    """Store operations bound to one open SQLAlchemy session."""

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock

    @contextmanager
    def transaction(self) -> Iterator["SqlTransaction"]:
        yield self

    def _live_row(self, kind: EntityKind, entity_id: str):
        row = self.session.get(ROW_TYPES[kind], entity_id)
        if row is None or row.deleted_at is not None:
            return None
        return row

    def _require_parent(self, kind: EntityKind, values: Dict[str, Any]) -> None:
        if kind not in PARENTS:
            return
        attr, parent_kind = PARENTS[kind]
        if attr in values and self._live_row(parent_kind, values[attr]) is None:
            raise NotFoundError(parent_kind.label, values[attr])

    def get(
        self, kind: EntityKind, entity_id: str, *, include_deleted: bool = False
    ) -> Optional[Record]:
        row = self.session.get(ROW_TYPES[kind], entity_id)
        if row is None or (row.deleted_at is not None and not include_deleted):
            return None
        return _to_record(kind, row)

    def list(
        self,
        kind: EntityKind,
        filters: Optional[Dict[str, Any]] = None,
        order: Sequence[OrderBy] = (),
        *,
        include_deleted: bool = False,
    ) -> list[Record]:
        filters = filters or {}
        _check_filters(kind, list(filters) + [o.field for o in order])
        row_type = ROW_TYPES[kind]
        stmt = select(row_type)
        if not include_deleted:
            stmt = stmt.where(row_type.deleted_at.is_(None))
        for name, value in _to_column_values(filters).items():
            stmt = stmt.where(getattr(row_type, name) == value)
        if order:
            stmt = stmt.order_by(*(_order_clause(row_type, o) for o in order))
        rows = self.session.execute(stmt).scalars().all()
        return [_to_record(kind, row) for row in rows]

    def create(self, kind: EntityKind, values: Dict[str, Any]) -> Record:
        _check_fields(kind, values)
        values = _normalize(kind, values)
        self._require_parent(kind, values)
        now = self.clock.now()
        row = ROW_TYPES[kind](
            id=uuid.uuid4().hex,
            created_at=now,
            updated_at=now,
            **_to_column_values(values),
        )
        self.session.add(row)
        self.session.flush()
        return _to_record(kind, row)

    def update(self, kind: EntityKind, entity_id: str, values: Dict[str, Any]) -> Record:
        _check_fields(kind, values)
        values = _normalize(kind, values)
        row = self._live_row(kind, entity_id)
        if row is None:
            raise NotFoundError(kind.label, entity_id)
        self._require_parent(kind, values)
        for key, value in _to_column_values(values).items():
            setattr(row, key, value)
        row.updated_at = self.clock.now()
        self.session.flush()
        return _to_record(kind, row)

    def soft_delete_cascade(self, kind: EntityKind, entity_id: str) -> datetime:
        if self._live_row(kind, entity_id) is None:
            raise NotFoundError(kind.label, entity_id)
        now = self.clock.now()
        if kind is EntityKind.PROJECT:
            goal_ids = select(GoalRow.id).where(GoalRow.project_id == entity_id)
            self.session.execute(
                update(TaskRow)
                .where(TaskRow.goal_id.in_(goal_ids), TaskRow.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            self.session.execute(
                update(GoalRow)
                .where(GoalRow.project_id == entity_id, GoalRow.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        elif kind is EntityKind.GOAL:
            self.session.execute(
                update(TaskRow)
                .where(TaskRow.goal_id == entity_id, TaskRow.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        row_type = ROW_TYPES[kind]
        self.session.execute(
            update(row_type)
            .where(row_type.id == entity_id)
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.expire_all()
        return now


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self.clock = Clock()
        Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[SqlTransaction]:
        try:
            with self.Session() as session, session.begin():
                yield SqlTransaction(session, self.clock)
        except IntegrityError as exc:
            raise ConflictError("A resource with this value already exists") from exc

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    def close(self) -> None:
        self.engine.dispose()

    def get(
        self, kind: EntityKind, entity_id: str, *, include_deleted: bool = False
    ) -> Optional[Record]:
        with self.transaction() as tx:
            return tx.get(kind, entity_id, include_deleted=include_deleted)

    def list(
        self,
        kind: EntityKind,
        filters: Optional[Dict[str, Any]] = None,
        order: Sequence[OrderBy] = (),
        *,
        include_deleted: bool = False,
    ) -> list[Record]:
        with self.transaction() as tx:
            return tx.list(kind, filters, order, include_deleted=include_deleted)

    def create(self, kind: EntityKind, values: Dict[str, Any]) -> Record:
        with self.transaction() as tx:
            return tx.create(kind, values)

    def update(self, kind: EntityKind, entity_id: str, values: Dict[str, Any]) -> Record:
        with self.transaction() as tx:
            return tx.update(kind, entity_id, values)

    def soft_delete_cascade(self, kind: EntityKind, entity_id: str) -> datetime:
        with self.transaction() as tx:
            return tx.soft_delete_cascade(kind, entity_id)
