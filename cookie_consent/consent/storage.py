"""
Consent storage adapters for the Cookie Consent Service
Database adapters for consent record persistence
"""

from contextlib import asynccontextmanager
import calendar
from datetime import datetime, timedelta, UTC
from typing import Any, AsyncIterator, Dict, List, Optional
import json
import structlog
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, case, func, or_, select
from sqlalchemy import update as sql_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from pydantic import ValidationError as PydanticValidationError

from ..config import ConsentConfig
from ..exceptions import InvalidSelectorError, StoreError
from ..utils.ids import generate_consent_uuid
from .models import (
    ChangeEntry,
    ConsentPreferences,
    ConsentRecord,
    ConsentStatus,
    ConsentUpdate,
    derive_status,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ConsentLogDB(Base):
    """SQLAlchemy model for consent records"""
    __tablename__ = "cookie_consent_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), nullable=False, unique=True, index=True)
    user_id = Column(Integer, index=True)
    url = Column(Text)
    ip_address = Column(String(64))
    ack = Column(Boolean, nullable=False, default=False)
    preferences = Column(Text, nullable=False)  # JSON object
    gpc = Column(Boolean, nullable=False, default=False)
    changes = Column(Text)  # JSON array
    status = Column(String(16), nullable=False)

    date_created = Column(DateTime(timezone=True), nullable=False)
    date_updated = Column(DateTime(timezone=True), nullable=False)
    date_expires = Column(DateTime(timezone=True))


class UserAccountDB(Base):
    """SQLAlchemy model for the user accounts consulted by email lookup"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def months_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar months elapsed from ``earlier`` to ``later``

    The anchor day is clamped to the length of the target month, so
    Aug 31 to Feb 28 counts as six months.
    """
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    anchor_day = min(earlier.day, calendar.monthrange(later.year, later.month)[1])
    if (later.day, later.timetz()) < (anchor_day, earlier.timetz()):
        months -= 1
    return months


def apply_staleness_reset(record: ConsentRecord, stale_months: int,
                          now: Optional[datetime] = None) -> ConsentRecord:
    """Clear ``ack`` on records that have not been updated for ``stale_months``"""
    now = now or _utcnow()
    if record.ack and record.date_updated is not None:
        if months_between(record.date_updated, now) >= stale_months:
            return record.model_copy(update={"ack": False})
    return record


def _dump_preferences(preferences: ConsentPreferences) -> str:
    return json.dumps(preferences.model_dump(mode="json"))


def _dump_changes(changes: List[ChangeEntry]) -> str:
    return json.dumps([change.model_dump(mode="json") for change in changes])


class ConsentStorage:
    """Storage adapter for consent records"""

    def __init__(self, database_url: Optional[str] = None,
                 config: Optional[ConsentConfig] = None,
                 engine: Optional[AsyncEngine] = None):
        self.config = config or ConsentConfig()
        self.database_url = database_url or self.config.database_url
        self.engine = engine or create_async_engine(self.database_url, pool_pre_ping=True)
        self.SessionLocal = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def init_models(self) -> None:
        """Create tables; migrations own the schema outside development"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.SessionLocal() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Consent store operation failed", operation=operation, error=str(e))
            raise StoreError(f"Consent store operation failed: {operation}",
                             operation=operation, reason=str(e)) from e

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self.config.record_expiry_days)

    def _from_db_model(self, row: ConsentLogDB) -> ConsentRecord:
        """Convert database model to ConsentRecord"""
        try:
            preferences = ConsentPreferences.model_validate(json.loads(row.preferences or "{}"))
            changes = [ChangeEntry.model_validate(c) for c in json.loads(row.changes or "[]")]
        except (json.JSONDecodeError, PydanticValidationError) as e:
            # Refuse to load rather than hand back a truncated audit trail
            logger.error("Invalid consent record JSON", uuid=row.uuid, error=str(e))
            raise StoreError("Consent record is corrupt", operation="load", reason=str(e)) from e

        return ConsentRecord(
            id=row.id,
            uuid=row.uuid,
            user_id=row.user_id,
            url=row.url,
            ip_address=row.ip_address,
            ack=bool(row.ack),
            preferences=preferences,
            gpc=bool(row.gpc),
            changes=changes,
            status=ConsentStatus(row.status),
            date_created=_aware(row.date_created),
            date_updated=_aware(row.date_updated),
            date_expires=_aware(row.date_expires),
        )

    async def load(self, id: Optional[int] = None, uuid: Optional[str] = None,
                   user_id: Optional[int] = None) -> Optional[ConsentRecord]:
        """
        Load a consent record by id, uuid or user_id

        Any one selector may match. When several rows match, a match on id
        wins over uuid, which wins over user_id.
        """
        if id is None and uuid is None and user_id is None:
            raise InvalidSelectorError()
        if self.config.verbose:
            logger.debug("Loading consent record", id=id, uuid=uuid, user_id=user_id)

        clauses = []
        if id is not None:
            clauses.append(ConsentLogDB.id == id)
        if uuid is not None:
            clauses.append(ConsentLogDB.uuid == uuid)
        if user_id is not None:
            clauses.append(ConsentLogDB.user_id == user_id)
        priority = case(*[(clause, rank) for rank, clause in enumerate(clauses)], else_=len(clauses))

        async with self._session("load") as session:
            q = select(ConsentLogDB).where(or_(*clauses)).order_by(priority, ConsentLogDB.id).limit(1)
            res = await session.execute(q)
            row = res.scalar_one_or_none()
            if row is None:
                return None
            record = self._from_db_model(row)

        return apply_staleness_reset(record, self.config.ack_stale_months)

    async def insert(self, record: ConsentRecord) -> ConsentRecord:
        """Store a new consent record"""
        now = _utcnow()
        row = ConsentLogDB(
            uuid=record.uuid or generate_consent_uuid(),
            user_id=record.user_id,
            url=record.url,
            ip_address=record.ip_address,
            ack=record.ack,
            preferences=_dump_preferences(record.preferences),
            gpc=record.gpc,
            changes=_dump_changes(record.changes),
            status=derive_status(record.preferences).value,
            date_created=now,
            date_updated=now,
            date_expires=self._expiry(now),
        )
        if self.config.verbose:
            logger.debug("Inserting consent record", uuid=row.uuid, user_id=row.user_id)

        async with self._session("insert") as session:
            session.add(row)
            await session.commit()
            row_id = row.id

        logger.info("Stored consent record", uuid=row.uuid, user_id=row.user_id)
        return await self.load(id=row_id)

    async def update(self, uuid: str, fields: ConsentUpdate) -> Optional[ConsentRecord]:
        """Replace the supplied fields of a record; status follows preferences"""
        now = _utcnow()
        values: Dict[str, Any] = {"date_updated": now, "date_expires": self._expiry(now)}
        for name in fields.model_fields_set:
            value = getattr(fields, name)
            if name == "preferences" and value is not None:
                values["preferences"] = _dump_preferences(value)
                values["status"] = derive_status(value).value
            elif name == "changes" and value is not None:
                values["changes"] = _dump_changes(value)
            elif name not in ("preferences", "changes"):
                values[name] = value
        if self.config.verbose:
            logger.debug("Updating consent record", uuid=uuid, fields=sorted(fields.model_fields_set))

        async with self._session("update") as session:
            await session.execute(
                sql_update(ConsentLogDB).where(ConsentLogDB.uuid == uuid).values(**values)
            )
            await session.commit()

        logger.info("Updated consent record", uuid=uuid)
        return await self.load(uuid=uuid)

    async def bind_user_id(self, uuid: str, user_id: int) -> Optional[ConsentRecord]:
        """Attach a user id to an anonymous record; never overwrites an existing one"""
        now = _utcnow()
        async with self._session("bind_user_id") as session:
            await session.execute(
                sql_update(ConsentLogDB)
                .where(ConsentLogDB.uuid == uuid, ConsentLogDB.user_id.is_(None))
                .values(user_id=user_id, date_updated=now, date_expires=self._expiry(now))
            )
            await session.commit()

        return await self.load(uuid=uuid)

    async def extend_expiry(self, uuid: str) -> Optional[ConsentRecord]:
        """Push a record's expiry to a full term from now"""
        if self.config.verbose:
            logger.debug("Extending consent expiry", uuid=uuid)
        async with self._session("extend_expiry") as session:
            await session.execute(
                sql_update(ConsentLogDB)
                .where(ConsentLogDB.uuid == uuid)
                .values(date_expires=self._expiry(_utcnow()))
            )
            await session.commit()

        return await self.load(uuid=uuid)

    async def lookup_id_by_email(self, email: str) -> Optional[int]:
        """Find the user account id registered for an email address"""
        if not email:
            return None
        async with self._session("lookup_id_by_email") as session:
            q = select(UserAccountDB.id).where(func.lower(UserAccountDB.email) == email.lower()).limit(1)
            res = await session.execute(q)
            return res.scalar_one_or_none()

    async def add_user_account(self, email: str) -> int:
        """Register a user account; returns its id"""
        async with self._session("add_user_account") as session:
            account = UserAccountDB(email=email)
            session.add(account)
            await session.commit()
            return account.id


class InMemoryConsentStorage(ConsentStorage):
    """In-memory storage for testing"""

    def __init__(self, config: Optional[ConsentConfig] = None):
        self.config = config or ConsentConfig()
        self.records: Dict[int, ConsentRecord] = {}
        self.users: Dict[str, int] = {}
        self._next_id = 1

    async def init_models(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def _find(self, id: Optional[int], uuid: Optional[str],
              user_id: Optional[int]) -> Optional[ConsentRecord]:
        if id is not None and id in self.records:
            return self.records[id]
        for record in sorted(self.records.values(), key=lambda r: r.id):
            if uuid is not None and record.uuid == uuid:
                return record
        for record in sorted(self.records.values(), key=lambda r: r.id):
            if user_id is not None and record.user_id == user_id:
                return record
        return None

    async def load(self, id: Optional[int] = None, uuid: Optional[str] = None,
                   user_id: Optional[int] = None) -> Optional[ConsentRecord]:
        """Load consent from memory"""
        if id is None and uuid is None and user_id is None:
            raise InvalidSelectorError()
        record = self._find(id, uuid, user_id)
        if record is None:
            return None
        return apply_staleness_reset(record.model_copy(deep=True), self.config.ack_stale_months)

    async def insert(self, record: ConsentRecord) -> ConsentRecord:
        """Store consent in memory"""
        now = _utcnow()
        stored = record.model_copy(deep=True, update={
            "id": self._next_id,
            "uuid": record.uuid or generate_consent_uuid(),
            "status": derive_status(record.preferences),
            "date_created": now,
            "date_updated": now,
            "date_expires": self._expiry(now),
        })
        self.records[stored.id] = stored
        self._next_id += 1
        return await self.load(id=stored.id)

    async def update(self, uuid: str, fields: ConsentUpdate) -> Optional[ConsentRecord]:
        """Update consent in memory"""
        current = self._find(None, uuid, None)
        if current is None:
            return None
        now = _utcnow()
        values: Dict[str, Any] = {name: getattr(fields, name) for name in fields.model_fields_set}
        if values.get("preferences") is not None:
            values["status"] = derive_status(values["preferences"])
        values.update(date_updated=now, date_expires=self._expiry(now))
        self.records[current.id] = current.model_copy(deep=True, update=values)
        return await self.load(uuid=uuid)

    async def bind_user_id(self, uuid: str, user_id: int) -> Optional[ConsentRecord]:
        current = self._find(None, uuid, None)
        if current is None:
            return None
        if current.user_id is None:
            now = _utcnow()
            self.records[current.id] = current.model_copy(update={
                "user_id": user_id, "date_updated": now, "date_expires": self._expiry(now),
            })
        return await self.load(uuid=uuid)

    async def extend_expiry(self, uuid: str) -> Optional[ConsentRecord]:
        current = self._find(None, uuid, None)
        if current is None:
            return None
        self.records[current.id] = current.model_copy(update={"date_expires": self._expiry(_utcnow())})
        return await self.load(uuid=uuid)

    async def lookup_id_by_email(self, email: str) -> Optional[int]:
        if not email:
            return None
        return self.users.get(email.lower())

    async def add_user_account(self, email: str) -> int:
        user_id = len(self.users) + 1
        self.users[email.lower()] = user_id
        return user_id
