"""Add catalog tags mirror

Creates the catalog_tags table that mirrors the MangaDex tag taxonomy so the
tag list can still be served while MangaDex is unavailable.

Revision ID: add_catalog_tags
Revises:
Create Date: 2026-01-12 00:00:00.000000

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "add_catalog_tags"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS catalog_tags (
            tag_id VARCHAR(64) PRIMARY KEY,
            "group" VARCHAR(32) NOT NULL,
            names JSONB NOT NULL DEFAULT '{}'::jsonb,
            descriptions JSONB NOT NULL DEFAULT '{}'::jsonb,
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
        )
    """
    )
    op.execute(
        'CREATE INDEX IF NOT EXISTS ix_catalog_tags_group ON catalog_tags ("group")'
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_catalog_tags_group")
    op.execute("DROP TABLE IF EXISTS catalog_tags")
