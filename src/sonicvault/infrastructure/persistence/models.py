"""SQLAlchemy ORM models for SonicVault."""

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from sonicvault.domain.entities import utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Hey future me - the profile row IS the credential store. access/refresh/expiry live here
# so the OAuth callback can upsert profile + tokens in one write, and the credential manager
# only ever touches those three columns. Tokens are stored as-is (no encryption).
class ProfileModel(Base):
    """Spotify-linked user profile plus its OAuth credential."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    spotify_user_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    profile_image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    songs: Mapped[list["SongModel"]] = relationship(
        "SongModel", back_populates="profile", cascade="all, delete-orphan"
    )


# Listen up - the UniqueConstraint on (user_id, spotify_id) is the ONLY thing standing between
# two concurrent acquisitions and a duplicate row. Don't drop it in a migration thinking the
# application checks are enough; they are not (both requests pass the lookup step).
class SongModel(Base):
    """Acquired track for a user."""

    __tablename__ = "songs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    spotify_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    artist: Mapped[str] = mapped_column(String(512), nullable=False)
    album: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cover_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    profile: Mapped["ProfileModel"] = relationship("ProfileModel", back_populates="songs")

    __table_args__ = (
        UniqueConstraint("user_id", "spotify_id", name="uq_songs_user_spotify"),
        Index("ix_songs_user_created", "user_id", "created_at"),
    )
