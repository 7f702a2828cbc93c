"""Repository implementations for domain entities."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from sonicvault.domain.entities import (
    AcquisitionRecord,
    TokenGrant,
    UserCredential,
    UserProfile,
    ensure_utc_aware,
    utc_now,
)
from sonicvault.domain.exceptions import RecordConflictError
from sonicvault.domain.ports import IAcquisitionRecordStore, ICredentialStore

from .database import Database
from .models import ProfileModel, SongModel

logger = logging.getLogger(__name__)


class CredentialRepository(ICredentialStore):
    """Credential store backed by the profiles table."""

    # Hey future me, the repo NEVER commits - whoever owns the session does (session_scope()).
    # Don't open sessions in here; use credential_store_scope() when you need a separate
    # transaction.
    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self, user_id: str) -> UserCredential | None:
        stmt = select(
            ProfileModel.id,
            ProfileModel.access_token,
            ProfileModel.refresh_token,
            ProfileModel.token_expires_at,
        ).where(ProfileModel.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return UserCredential(
            user_id=row.id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=ensure_utc_aware(row.token_expires_at)
            if row.token_expires_at
            else None,
        )

    # Listen up - this is a single UPDATE ... WHERE id = :user_id, not read-modify-write.
    # The refresh_token column is only in the SET clause when the server rotated it, so a
    # missing refresh_token in the grant can never blank out the stored one.
    async def update_after_refresh(
        self,
        user_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> bool:
        values: dict[str, Any] = {
            "access_token": access_token,
            "token_expires_at": expires_at,
            "updated_at": utc_now(),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token

        stmt = (
            update(ProfileModel)
            .where(ProfileModel.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Profile data without the token columns."""
        model = await self.session.get(ProfileModel, user_id)
        if model is None:
            return None
        return UserProfile(
            id=model.id,
            spotify_user_id=model.spotify_user_id,
            display_name=model.display_name,
            email=model.email,
            country=model.country,
            product_type=model.product_type,
            profile_image_url=model.profile_image_url,
        )

    async def upsert_authorized(self, profile: UserProfile, grant: TokenGrant) -> str:
        """Store profile and tokens after the OAuth callback; returns our user id."""
        stmt = select(ProfileModel).where(
            ProfileModel.spotify_user_id == profile.spotify_user_id
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()

        if model is None:
            model = ProfileModel(spotify_user_id=profile.spotify_user_id)
            self.session.add(model)

        model.display_name = profile.display_name
        model.email = profile.email
        model.country = profile.country
        model.product_type = profile.product_type
        model.profile_image_url = profile.profile_image_url
        model.access_token = grant.access_token
        model.token_expires_at = grant.expires_at()
        # Re-authorization without a refresh token in the answer keeps the old one
        if grant.refresh_token:
            model.refresh_token = grant.refresh_token

        await self.session.flush()
        return model.id


class AcquisitionRecordRepository(IAcquisitionRecordStore):
    """Acquisition record store backed by the songs table."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    @staticmethod
    def _to_entity(model: SongModel) -> AcquisitionRecord:
        return AcquisitionRecord(
            id=model.id,
            user_id=model.user_id,
            track_reference=model.spotify_id,
            title=model.title,
            artist=model.artist,
            album=model.album,
            cover_url=model.cover_url,
            storage_key=model.storage_path,
            duration_ms=model.duration_ms or 0,
            created_at=ensure_utc_aware(model.created_at),
        )

    async def get(self, user_id: str, track_reference: str) -> AcquisitionRecord | None:
        stmt = select(SongModel).where(
            SongModel.user_id == user_id, SongModel.spotify_id == track_reference
        )
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_for_user(self, user_id: str) -> list[AcquisitionRecord]:
        stmt = (
            select(SongModel)
            .where(SongModel.user_id == user_id)
            .order_by(SongModel.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    # Hey future me - INSERT ... ON CONFLICT DO NOTHING instead of catching IntegrityError.
    # A failed plain INSERT poisons the whole transaction, and SAVEPOINTs are flaky on
    # pysqlite/aiosqlite. With DO NOTHING the loser just sees rowcount == 0 and the session
    # stays usable for re-reading the winning row.
    async def insert(self, record: AcquisitionRecord) -> AcquisitionRecord:
        dialect = self.session.get_bind().dialect.name
        insert_fn = postgresql.insert if dialect == "postgresql" else sqlite.insert

        values = {
            "user_id": record.user_id,
            "spotify_id": record.track_reference,
            "title": record.title,
            "artist": record.artist,
            "album": record.album,
            "cover_url": record.cover_url,
            "storage_path": record.storage_key,
            "duration_ms": record.duration_ms,
            "created_at": record.created_at,
        }
        stmt = (
            insert_fn(SongModel)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id", "spotify_id"])
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            raise RecordConflictError(record.user_id, record.track_reference)

        stored = await self.get(record.user_id, record.track_reference)
        if stored is None:  # pragma: no cover - row was just inserted in this transaction
            raise RecordConflictError(record.user_id, record.track_reference)
        return stored

    async def update_durations(self, user_id: str, durations: dict[str, int]) -> int:
        """Fill in durations for records still stored with duration 0."""
        updated = 0
        for track_reference, duration_ms in durations.items():
            if duration_ms <= 0:
                continue
            stmt = (
                update(SongModel)
                .where(
                    SongModel.user_id == user_id,
                    SongModel.spotify_id == track_reference,
                    SongModel.duration_ms == 0,
                )
                .values(duration_ms=duration_ms)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            updated += result.rowcount or 0
        return updated


@asynccontextmanager
async def credential_store_scope(database: Database) -> AsyncIterator[CredentialRepository]:
    """Credential repository on its own committed transaction (for long-lived services)."""
    async with database.session_scope() as session:
        yield CredentialRepository(session)


@asynccontextmanager
async def record_store_scope(
    database: Database,
) -> AsyncIterator[AcquisitionRecordRepository]:
    """Acquisition record repository on its own committed transaction (background tasks)."""
    async with database.session_scope() as session:
        yield AcquisitionRecordRepository(session)
