from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import Boolean, DateTime, JSON, String, Text, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from servicekit.db import AsyncDatabaseManager, Base, create_all_tables
from servicekit.timezone import ensure_utc, now_utc
from user_migration.core.exceptions import StoreError, StoreUnavailableError
from user_migration.core.models import CanonicalUser, ContentDocument
from user_migration.core.store import PROFILE_LEGACY_ID_KEYS, USER_UPDATABLE_FIELDS, CanonicalStore

T = TypeVar("T")
logger = logging.getLogger(__name__)


class UserORM(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column("id", String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_reset_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    profile: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ContentDocumentORM(Base):
    __tablename__ = "content_documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PostgresCanonicalStore(CanonicalStore):
    def __init__(self, database_url: str, *, max_retries: int = 3) -> None:
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self._db = AsyncDatabaseManager(database_url, max_retries=max_retries)
        self._orm_ready = False

    async def ping(self) -> None:
        try:
            await self._ensure_orm_ready()
            await self._db.ping()
        except Exception as exc:
            raise StoreUnavailableError(f"canonical store unreachable: {exc}") from exc

    async def close(self) -> None:
        await self._db.disconnect()
        self._orm_ready = False

    async def query_by_email(self, email: str) -> list[CanonicalUser]:
        needle = email.strip().lower()

        async def _run(session: AsyncSession) -> list[CanonicalUser]:
            rows = await session.scalars(select(UserORM).where(func.lower(UserORM.email) == needle))
            return [self._to_user(row) for row in rows.all()]

        return await self._run(_run)

    async def query_by_id(self, user_id: str) -> CanonicalUser | None:
        async def _run(session: AsyncSession) -> CanonicalUser | None:
            row = await session.get(UserORM, user_id)
            return self._to_user(row) if row is not None else None

        return await self._run(_run)

    async def query_by_profile_legacy_id(self, legacy_id: str) -> list[CanonicalUser]:
        async def _run(session: AsyncSession) -> list[CanonicalUser]:
            clauses = [UserORM.profile[key].as_string() == legacy_id for key in PROFILE_LEGACY_ID_KEYS]
            rows = await session.scalars(select(UserORM).where(or_(*clauses)).order_by(UserORM.created_at))
            return [self._to_user(row) for row in rows.all()]

        return await self._run(_run)

    async def insert_user(self, user: CanonicalUser) -> CanonicalUser:
        async def _run(session: AsyncSession) -> CanonicalUser:
            if await session.get(UserORM, user.user_id) is not None:
                raise StoreError(f"duplicate user id: {user.user_id}")
            now = now_utc()
            row = UserORM(
                user_id=user.user_id,
                email=user.email.lower(),
                full_name=user.full_name,
                role=user.role,
                status=user.status,
                password_hash=user.password_hash,
                password_reset_required=user.password_reset_required,
                profile=user.profile,
                created_at=self._parse_dt(user.created_at) or now,
                updated_at=self._parse_dt(user.updated_at) or now,
            )
            session.add(row)
            await session.flush()
            return self._to_user(row)

        return await self._run(_run)

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> CanonicalUser:
        unknown = set(updates) - set(USER_UPDATABLE_FIELDS)
        if unknown:
            raise StoreError(f"fields not updatable: {', '.join(sorted(unknown))}")

        async def _run(session: AsyncSession) -> CanonicalUser:
            row = await session.get(UserORM, user_id)
            if row is None:
                raise StoreError(f"user not found: {user_id}")
            for key, value in updates.items():
                if key == "email":
                    value = str(value).lower()
                setattr(row, key, value)
            row.updated_at = now_utc()
            await session.flush()
            return self._to_user(row)

        return await self._run(_run)

    async def upsert_document(self, document: ContentDocument) -> ContentDocument:
        async def _run(session: AsyncSession) -> ContentDocument:
            row = await session.get(ContentDocumentORM, (document.collection, document.doc_id))
            if row is None:
                row = ContentDocumentORM(collection=document.collection, doc_id=document.doc_id)
                session.add(row)
            row.data = document.data
            row.attributes = document.attributes
            row.created_at = self._parse_dt(document.created_at) or row.created_at or now_utc()
            row.updated_at = self._parse_dt(document.updated_at) or now_utc()
            await session.flush()
            return self._to_document(row)

        return await self._run(_run)

    async def list_users(self) -> list[CanonicalUser]:
        async def _run(session: AsyncSession) -> list[CanonicalUser]:
            rows = await session.scalars(select(UserORM).order_by(UserORM.created_at))
            return [self._to_user(row) for row in rows.all()]

        return await self._run(_run)

    async def list_documents(self, collection: str) -> list[ContentDocument]:
        async def _run(session: AsyncSession) -> list[ContentDocument]:
            rows = await session.scalars(
                select(ContentDocumentORM)
                .where(ContentDocumentORM.collection == collection)
                .order_by(ContentDocumentORM.doc_id)
            )
            return [self._to_document(row) for row in rows.all()]

        return await self._run(_run)

    async def _run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            await self._ensure_orm_ready()
            return await self._db.run_with_session(fn)
        except StoreError:
            raise
        except IntegrityError as exc:
            raise StoreError(f"integrity violation: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.warning("canonical_store_error", extra={"reason": str(exc)})
            raise StoreError(f"canonical store error: {exc}") from exc

    async def _ensure_orm_ready(self) -> None:
        if self._orm_ready:
            return
        await self._db.connect()
        await create_all_tables(self._db.engine, Base.metadata)
        self._orm_ready = True

    def _to_user(self, row: UserORM) -> CanonicalUser:
        return CanonicalUser(
            user_id=row.user_id,
            email=row.email,
            full_name=row.full_name or "",
            role=row.role,
            status=row.status,
            profile=dict(row.profile or {}),
            password_hash=row.password_hash,
            password_reset_required=bool(row.password_reset_required),
            created_at=self._format_dt(row.created_at),
            updated_at=self._format_dt(row.updated_at),
        )

    def _to_document(self, row: ContentDocumentORM) -> ContentDocument:
        return ContentDocument(
            collection=row.collection,
            doc_id=row.doc_id,
            data=dict(row.data or {}),
            attributes=dict(row.attributes or {}),
            created_at=self._format_dt(row.created_at) if row.created_at else None,
            updated_at=self._format_dt(row.updated_at) if row.updated_at else None,
        )

    def _parse_dt(self, value: str | None) -> datetime | None:
        if not value:
            return None
        try:
            return ensure_utc(datetime.fromisoformat(value))
        except ValueError:
            return None

    def _format_dt(self, value: datetime | None) -> str:
        return ensure_utc(value or now_utc()).isoformat()
