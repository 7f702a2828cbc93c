"""create profiles and songs

Revision ID: aa01001abC01
Revises:
Create Date: 2026-10-19 10:00:00.000000

Hey future me - INITIAL SCHEMA!

TABLES:
- profiles: one row per Spotify account that logged in. Also the credential store:
  access_token / refresh_token / token_expires_at are only ever written by the OAuth
  callback (upsert) and by the credential manager (conditional UPDATE after a refresh).
- songs: one row per acquired track per user.

CONSTRAINTS:
- ix_profiles_spotify_user_id (unique): a second login of the same account updates its row
- uq_songs_user_spotify: at most ONE song per (user_id, spotify_id). Concurrent downloads
  of the same track rely on this; the loser's INSERT ... ON CONFLICT DO NOTHING hits it.
- songs.user_id -> profiles.id ON DELETE CASCADE

INDEXES:
- ix_songs_user_created: /api/my-songs lists newest first per user
"""

from typing import Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "aa01001abC01"
down_revision: Union[str, tuple[str, ...], None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    # === profiles ===
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("spotify_user_id", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("profile_image_url", sa.String(512), nullable=True),
        sa.Column("country", sa.String(8), nullable=True),
        sa.Column("product_type", sa.String(32), nullable=True),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_profiles_spotify_user_id", "profiles", ["spotify_user_id"], unique=True
    )

    # === songs ===
    op.create_table(
        "songs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("spotify_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("artist", sa.String(512), nullable=False),
        sa.Column("album", sa.String(512), nullable=True),
        sa.Column("cover_url", sa.String(1024), nullable=True),
        sa.Column("storage_path", sa.String(512), nullable=False),
        sa.Column("duration_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "spotify_id", name="uq_songs_user_spotify"),
    )
    op.create_index("ix_songs_user_id", "songs", ["user_id"])
    op.create_index("ix_songs_user_created", "songs", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_songs_user_created", table_name="songs")
    op.drop_index("ix_songs_user_id", table_name="songs")
    op.drop_table("songs")
    op.drop_index("ix_profiles_spotify_user_id", table_name="profiles")
    op.drop_table("profiles")
