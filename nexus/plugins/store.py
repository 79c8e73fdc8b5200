"""Persisted plugin catalog - a name-addressed record store backed by SQLAlchemy."""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from nexus.plugins.descriptor import PluginDescriptor

logger = logging.getLogger(__name__)

Base = declarative_base()

# Maps free-form descriptor fields to the TEXT columns they are serialized into.
_SERIALIZED_FIELDS = {
    "dependencies": ("dependencies", list),
    "config": ("config", dict),
    "settings": ("settings", dict),
    "metadata": ("metadata_", dict),
}

_PLAIN_FIELDS = (
    "version",
    "description",
    "author",
    "route",
    "icon",
    "category",
    "tags",
    "active",
    "featured",
    "status",
    "has_view",
    "installed_at",
    "last_updated",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PluginRecord(Base):
    """Plugin catalog row."""

    __tablename__ = "plugins"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False, unique=True, index=True)
    version = Column(String(50), nullable=False, default="1.0.0")
    description = Column(Text, nullable=False, default="")
    author = Column(String(255), default="NexusCore")
    route = Column(String(255), nullable=False, index=True)
    icon = Column(String(100), default="box")
    category = Column(String(100), default="utility", index=True)
    tags = Column(JSON, default=list)
    active = Column(Boolean, nullable=False, default=True, index=True)
    featured = Column(Boolean, nullable=False, default=False, index=True)
    status = Column(String(20), default="active")
    has_view = Column(Boolean, nullable=False, default=False)
    dependencies = Column(Text, default="[]")
    config = Column(Text, default="{}")
    settings = Column(Text, default="{}")
    metadata_ = Column("metadata", Text, default="{}")
    installed_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PluginRecord(name={self.name}, version={self.version}, active={self.active})>"


def _loads(value: Optional[str], default_type: type) -> Any:
    if not value:
        return default_type()
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return default_type()
    return parsed if isinstance(parsed, default_type) else default_type()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine, preparing SQLite specifics (file dir, in-memory pool)."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        db_path = database_url.split("///", 1)[-1]
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, connect_args=connect_args)
    return create_engine(database_url, pool_pre_ping=True)


class PluginRecordStore:
    """Create/find/update/delete plugin records by name.

    Records are returned as plain dicts keyed by PluginDescriptor field names,
    so callers decide how to validate them.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "PluginRecordStore":
        return cls(create_db_engine(database_url))

    def find_active(self) -> List[Dict[str, Any]]:
        """All active records ordered by (category, name)."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(PluginRecord)
                .where(PluginRecord.active.is_(True))
                .order_by(PluginRecord.category, PluginRecord.name)
            ).all()
            return [self._to_record(row) for row in rows]

    def find_all(self) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(PluginRecord).order_by(PluginRecord.category, PluginRecord.name)
            ).all()
            return [self._to_record(row) for row in rows]

    def find_one(self, name: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as session:
            row = session.scalars(select(PluginRecord).where(PluginRecord.name == name)).first()
            return self._to_record(row) if row else None

    def upsert(self, descriptor: PluginDescriptor, **overrides: Any) -> Dict[str, Any]:
        """Create the record for descriptor.name, or update the existing one.

        Args:
            descriptor: Descriptor to persist
            **overrides: Field values that win over the descriptor's (e.g. active=True)

        Returns:
            The stored record as read back from the database
        """
        values = self._to_columns({**descriptor.model_dump(), **overrides})
        with self._session_factory() as session, session.begin():
            row = session.scalars(
                select(PluginRecord).where(PluginRecord.name == descriptor.name)
            ).first()
            if row is None:
                if values.get("installed_at") is None:
                    values["installed_at"] = utcnow()
                if values.get("last_updated") is None:
                    values["last_updated"] = values["installed_at"]
                row = PluginRecord(name=descriptor.name, **values)
                session.add(row)
                created = True
            else:
                if overrides.get("installed_at") is None:
                    values.pop("installed_at", None)
                values["last_updated"] = utcnow()
                for column, value in values.items():
                    setattr(row, column, value)
                created = False
            session.flush()
            session.refresh(row)
            record = self._to_record(row)

        logger.info(
            f"Plugin {'created' if created else 'updated'}: {record['name']} v{record['version']}"
        )
        return record

    def update_where(self, name: str, patch: Dict[str, Any]) -> int:
        """Apply a partial update to the record named `name`.

        Returns:
            Number of rows affected (0 when no such record exists)
        """
        values = self._to_columns(patch)
        values.pop("installed_at", None)
        values["last_updated"] = patch.get("last_updated") or utcnow()
        values["updated_at"] = utcnow()
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(PluginRecord).where(PluginRecord.name == name).values(**values)
            )
            affected = result.rowcount or 0
        if affected:
            logger.info(f"Plugin updated: {name} ({', '.join(sorted(patch))})")
        return affected

    def delete_where(self, name: str) -> int:
        with self._session_factory() as session, session.begin():
            result = session.execute(delete(PluginRecord).where(PluginRecord.name == name))
            affected = result.rowcount or 0
        if affected:
            logger.info(f"Plugin deleted: {name}")
        return affected

    def _to_columns(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Translate descriptor field values into column values."""
        values: Dict[str, Any] = {}
        for field in _PLAIN_FIELDS:
            if field in data:
                values[field] = data[field]
        for field, (column, default_type) in _SERIALIZED_FIELDS.items():
            if field in data:
                values[column] = json.dumps(data[field] or default_type(), ensure_ascii=False)
        return values

    def _to_record(self, row: PluginRecord) -> Dict[str, Any]:
        record = {"name": row.name}
        for field in _PLAIN_FIELDS:
            record[field] = getattr(row, field)
        record["tags"] = list(record["tags"] or [])
        for field, (column, default_type) in _SERIALIZED_FIELDS.items():
            record[field] = _loads(getattr(row, column), default_type)
        return record
