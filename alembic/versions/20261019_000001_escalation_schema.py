"""Escalation engine schema.

Creates identity mirrors (units, subjects), obligations and fulfillment
records, the alert ledger with its pair/period uniqueness constraint,
notifications, proposals, feed posts and admin-managed settings.

Revision ID: escalation_001
Revises:
Create Date: 2026-10-19
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "escalation_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1. Identity
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS units (
        code            VARCHAR(50) PRIMARY KEY,
        name            VARCHAR(255) NOT NULL,
        is_active       BOOLEAN NOT NULL DEFAULT TRUE
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS subjects (
        id                              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        full_name                       VARCHAR(255) NOT NULL,
        phone                           VARCHAR(50),
        role                            VARCHAR(50),
        unit_code                       VARCHAR(50),
        is_active                       BOOLEAN NOT NULL DEFAULT TRUE,
        receive_in_app_notifications    BOOLEAN NOT NULL DEFAULT TRUE,
        receive_whatsapp_notifications  BOOLEAN NOT NULL DEFAULT TRUE,
        created_at                      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_subjects_unit_code ON subjects(unit_code)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_subjects_role ON subjects(role)")

    # ──────────────────────────────────────────────────────────────────────
    # 2. Obligations & fulfillment
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS obligations (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        title           VARCHAR(255) NOT NULL,
        description     TEXT,
        rule_family     VARCHAR(20) NOT NULL CHECK (rule_family IN ('deadline', 'persistence')),
        audience        VARCHAR(20) NOT NULL DEFAULT 'all',
        audience_values JSONB NOT NULL DEFAULT '[]',
        deadline_time   VARCHAR(5),
        channels        JSONB NOT NULL DEFAULT '[]',
        max_reminders   INTEGER,
        sort_order      INTEGER NOT NULL DEFAULT 0,
        is_active       BOOLEAN NOT NULL DEFAULT TRUE,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_obligations_family_active "
        "ON obligations(rule_family, is_active)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS fulfillment_records (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        obligation_id   UUID NOT NULL REFERENCES obligations(id),
        subject_id      UUID REFERENCES subjects(id),
        unit_code       VARCHAR(50),
        success         BOOLEAN NOT NULL DEFAULT TRUE,
        recorded_at     TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_fulfillment_obligation_subject "
        "ON fulfillment_records(obligation_id, subject_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_fulfillment_obligation_unit "
        "ON fulfillment_records(obligation_id, unit_code)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_fulfillment_recorded_at ON fulfillment_records(recorded_at)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 3. Alert ledger & notifications
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS alert_records (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        obligation_id       UUID NOT NULL REFERENCES obligations(id),
        subject_kind        VARCHAR(20) NOT NULL,
        subject_ref         VARCHAR(128) NOT NULL,
        period              DATE NOT NULL,
        channels            JSONB NOT NULL DEFAULT '[]',
        delivery_results    JSONB NOT NULL DEFAULT '{}',
        delivered           BOOLEAN NOT NULL DEFAULT TRUE,
        sent_at             TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_alert_records_pair_period
            UNIQUE (obligation_id, subject_kind, subject_ref, period)
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_alert_records_pair "
        "ON alert_records(obligation_id, subject_kind, subject_ref)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS notifications (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        subject_id      UUID NOT NULL REFERENCES subjects(id),
        title           VARCHAR(500) NOT NULL,
        message         TEXT NOT NULL,
        type            VARCHAR(50) NOT NULL DEFAULT 'alert',
        reference_id    VARCHAR(128),
        is_read         BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_notifications_subject_id ON notifications(subject_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_notifications_created_at ON notifications(created_at)")

    # ──────────────────────────────────────────────────────────────────────
    # 4. Proposals & feed
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS proposals (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        code            VARCHAR(50) NOT NULL,
        title           VARCHAR(255) NOT NULL,
        description     TEXT NOT NULL DEFAULT '',
        status          VARCHAR(20) NOT NULL DEFAULT 'voting'
                        CHECK (status IN ('voting', 'approved', 'rejected')),
        vote_end        TIMESTAMP NOT NULL,
        positive_votes  INTEGER NOT NULL DEFAULT 0,
        total_votes     INTEGER NOT NULL DEFAULT 0,
        submitted_by    UUID NOT NULL REFERENCES subjects(id),
        media_urls      JSONB NOT NULL DEFAULT '[]',
        quorum          NUMERIC(5, 2),
        resolved_at     TIMESTAMP,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_proposals_status_vote_end ON proposals(status, vote_end)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS feed_posts (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        type            VARCHAR(50) NOT NULL,
        title           VARCHAR(500) NOT NULL,
        body            TEXT NOT NULL,
        reference_id    VARCHAR(128),
        created_by      UUID,
        media_url       VARCHAR(1000),
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 5. Admin-managed settings
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS config_settings (
        key             VARCHAR(100) PRIMARY KEY,
        value           JSONB,
        updated_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS notification_templates (
        id                  VARCHAR(100) PRIMARY KEY,
        title               VARCHAR(500) NOT NULL,
        message_template    TEXT NOT NULL,
        is_active           BOOLEAN NOT NULL DEFAULT TRUE,
        updated_at          TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)


def downgrade() -> None:
    drop_order = [
        "notification_templates", "config_settings",
        "feed_posts", "proposals",
        "notifications", "alert_records",
        "fulfillment_records", "obligations",
        "subjects", "units",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl} CASCADE")
