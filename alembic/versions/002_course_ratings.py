"""Course ratings: one 1-5 star rating per account and course.

Revision ID: 002_course_ratings
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_course_ratings"
down_revision: str | None = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS course_ratings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            course_id UUID NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
            review TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_course_rating UNIQUE (course_id, account_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_course_ratings_course_id ON course_ratings(course_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS course_ratings CASCADE")
