"""Initial schema: accounts, catalogue, purchases, subscriptions, progress, achievements.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(320) UNIQUE NOT NULL,
            name VARCHAR(100) NOT NULL,
            password_hash VARCHAR(256) NOT NULL,
            role VARCHAR(16) NOT NULL DEFAULT 'standard',
            subscription_expires_at TIMESTAMPTZ,
            last_login TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Catalogue ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS courses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(200) NOT NULL,
            description TEXT,
            price NUMERIC(10, 2) NOT NULL DEFAULT 0,
            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            external_product_id VARCHAR(64) UNIQUE,
            is_published BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS course_modules (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            course_id UUID NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            position INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS lessons (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            module_id UUID NOT NULL REFERENCES course_modules(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            content TEXT,
            position INTEGER NOT NULL DEFAULT 0,
            is_preview BOOLEAN NOT NULL DEFAULT false
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lessons_module
        ON lessons(module_id, position)
    """)

    # --- Payments & purchases ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS payments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            course_id UUID NOT NULL REFERENCES courses(id),
            provider_order_id VARCHAR(64) UNIQUE NOT NULL,
            capture_id VARCHAR(64),
            amount NUMERIC(10, 2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_payments_account_id
        ON payments(account_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS course_purchases (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            course_id UUID NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            payment_id UUID REFERENCES payments(id),
            purchased_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_purchase_account_course UNIQUE (account_id, course_id)
        )
    """)

    # --- Subscriptions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS subscription_plans (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) NOT NULL,
            description TEXT,
            price NUMERIC(10, 2) NOT NULL,
            duration_months INTEGER NOT NULL DEFAULT 1,
            provider_plan_id VARCHAR(64) UNIQUE NOT NULL,
            features JSONB NOT NULL DEFAULT '[]',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            plan_id UUID REFERENCES subscription_plans(id),
            provider_subscription_id VARCHAR(64) UNIQUE NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT false,
            start_time TIMESTAMPTZ,
            end_time TIMESTAMPTZ,
            last_payment_failed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_subscriptions_account_id
        ON subscriptions(account_id)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_subscriptions_one_active
        ON subscriptions(account_id) WHERE is_active
    """)

    # --- Progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS lesson_progress (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            lesson_id UUID NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            last_accessed TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_lesson_progress_account_lesson UNIQUE (account_id, lesson_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS course_progress (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            course_id UUID NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
            total_lessons INTEGER NOT NULL DEFAULT 0,
            completed_lessons INTEGER NOT NULL DEFAULT 0,
            percentage DOUBLE PRECISION NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            last_accessed TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_course_progress_account_course UNIQUE (account_id, course_id)
        )
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(100) UNIQUE NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            icon VARCHAR(64),
            trigger_type VARCHAR(32) NOT NULL DEFAULT 'manual',
            trigger_value INTEGER NOT NULL DEFAULT 1,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievements_trigger
        ON achievements(trigger_type, trigger_value)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS account_achievements (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            achievement_id UUID NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            earned BOOLEAN NOT NULL DEFAULT false,
            earned_at TIMESTAMPTZ,
            CONSTRAINT uq_account_achievement UNIQUE (account_id, achievement_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS account_stats (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            stat_type VARCHAR(32) NOT NULL,
            value INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_account_stat UNIQUE (account_id, stat_type)
        )
    """)

    # --- Social ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS lesson_comments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lesson_id UUID NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_lesson_comments_lesson_id ON lesson_comments(lesson_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_lesson_comments_account_id ON lesson_comments(account_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(200) NOT NULL,
            message TEXT,
            read BOOLEAN NOT NULL DEFAULT false,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_notifications_account_id ON notifications(account_id)")

    # --- Webhooks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS webhook_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            provider_event_id VARCHAR(64) UNIQUE NOT NULL,
            event_type VARCHAR(64) NOT NULL,
            resource_id VARCHAR(64),
            received_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS webhook_events CASCADE")
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS lesson_comments CASCADE")
    op.execute("DROP TABLE IF EXISTS account_stats CASCADE")
    op.execute("DROP TABLE IF EXISTS account_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS course_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS lesson_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS subscriptions CASCADE")
    op.execute("DROP TABLE IF EXISTS subscription_plans CASCADE")
    op.execute("DROP TABLE IF EXISTS course_purchases CASCADE")
    op.execute("DROP TABLE IF EXISTS payments CASCADE")
    op.execute("DROP TABLE IF EXISTS lessons CASCADE")
    op.execute("DROP TABLE IF EXISTS course_modules CASCADE")
    op.execute("DROP TABLE IF EXISTS courses CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
