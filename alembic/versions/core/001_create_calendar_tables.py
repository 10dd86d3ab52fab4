"""create_calendar_tables

Revision ID: core_001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS organizations (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS organization_members (
            organization_id TEXT NOT NULL REFERENCES organizations (id) ON DELETE CASCADE,
            user_id TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'member',
            joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (organization_id, user_id)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_org_members_user ON organization_members (user_id)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            organization_id TEXT REFERENCES organizations (id) ON DELETE SET NULL,
            name TEXT,
            members TEXT[] NOT NULL DEFAULT '{}',
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            created_by TEXT,
            assignees TEXT[] NOT NULL DEFAULT '{}',
            project_id TEXT,
            calendar_projection TEXT NOT NULL DEFAULT 'Hide',
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created_by ON tasks (created_by)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignees ON tasks USING GIN (assignees)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks (project_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            user_id TEXT,
            project_id TEXT,
            audience TEXT,
            start_time TIMESTAMPTZ,
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_events_user_start ON events (user_id, start_time)")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_events_audience_start ON events (audience, start_time)"
    )
    op.execute("CREATE INDEX IF NOT EXISTS idx_events_project ON events (project_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS milestones (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            project_id TEXT NOT NULL,
            due_date TIMESTAMPTZ,
            doc JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_milestones_project_due ON milestones (project_id, due_date)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS availability (
            key TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            day DATE NOT NULL,
            available_hours DOUBLE PRECISION NOT NULL,
            busy_hours DOUBLE PRECISION NOT NULL,
            ooo BOOLEAN NOT NULL DEFAULT false,
            window_start TIMESTAMPTZ NOT NULL,
            window_end TIMESTAMPTZ NOT NULL,
            computed_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (user_id, day)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_log (
            id BIGSERIAL PRIMARY KEY,
            event_type TEXT NOT NULL,
            user_id TEXT,
            metadata JSONB NOT NULL DEFAULT '{}',
            timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_activity_log_user_ts ON activity_log (user_id, timestamp)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS activity_log")
    op.execute("DROP TABLE IF EXISTS availability")
    op.execute("DROP TABLE IF EXISTS milestones")
    op.execute("DROP TABLE IF EXISTS events")
    op.execute("DROP TABLE IF EXISTS tasks")
    op.execute("DROP TABLE IF EXISTS projects")
    op.execute("DROP TABLE IF EXISTS organization_members")
    op.execute("DROP TABLE IF EXISTS organizations")
    op.execute("DROP TABLE IF EXISTS users")
