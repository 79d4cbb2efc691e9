"""Pipeline schema — tables owned by the scheduled jobs.

Creates daily_bin_metrics, anomalies, bin_insights, rewards_ledger and
reward_balances. bin_events belongs to the ingestion layer and is expected
to exist already.

Revision ID: pipeline_001
Revises:
Create Date: 2026-10-18
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "pipeline_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1. Metrics Aggregator
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS daily_bin_metrics (
        metric_date         DATE NOT NULL,
        bin_id              UUID NOT NULL,
        deposit_count       INTEGER NOT NULL DEFAULT 0,
        plastic_count       INTEGER NOT NULL DEFAULT 0,
        paper_count         INTEGER NOT NULL DEFAULT 0,
        metal_count         INTEGER NOT NULL DEFAULT 0,
        glass_count         INTEGER NOT NULL DEFAULT 0,
        organic_count       INTEGER NOT NULL DEFAULT 0,
        hv_count            INTEGER NOT NULL DEFAULT 0,
        lv_count            INTEGER NOT NULL DEFAULT 0,
        org_count           INTEGER NOT NULL DEFAULT 0,
        total_weight_kg     DOUBLE PRECISION NOT NULL DEFAULT 0,
        avg_fill_level_pct  DOUBLE PRECISION,
        min_battery_pct     DOUBLE PRECISION,
        peak_hour           INTEGER CHECK (peak_hour BETWEEN 0 AND 23),
        peak_hour_deposits  INTEGER NOT NULL DEFAULT 0,
        hourly_counts       JSONB NOT NULL DEFAULT '[]',
        computed_at         TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        PRIMARY KEY (metric_date, bin_id)
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 2. Anomaly Detector
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS anomalies (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        bin_id              UUID NOT NULL,
        anomaly_type        VARCHAR(50) NOT NULL,
        severity            VARCHAR(10) NOT NULL CHECK (severity IN ('low', 'medium', 'high')),
        description         TEXT NOT NULL,
        observed_value      DOUBLE PRECISION NOT NULL,
        threshold           DOUBLE PRECISION NOT NULL,
        trigger_event_id    UUID,
        window_start        TIMESTAMP NOT NULL,
        window_end          TIMESTAMP NOT NULL,
        window_event_ids    JSONB NOT NULL DEFAULT '[]',
        details             JSONB NOT NULL DEFAULT '{}',
        time_bucket         TIMESTAMP NOT NULL,
        detected_at         TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_anomaly_dedupe UNIQUE (bin_id, anomaly_type, time_bucket)
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_anomalies_bin_detected ON anomalies (bin_id, detected_at)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 3. Insight Generator
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS bin_insights (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        bin_id              UUID NOT NULL,
        generated_at        TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
        insights            JSONB NOT NULL DEFAULT '[]',
        recommendations     JSONB NOT NULL DEFAULT '[]',
        categories          JSONB NOT NULL DEFAULT '[]',
        metric_date         DATE,
        anomaly_ids         JSONB NOT NULL DEFAULT '[]',
        is_current          BOOLEAN NOT NULL DEFAULT TRUE
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_bin_insights_bin_current ON bin_insights (bin_id, is_current)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_bin_insights_bin_generated ON bin_insights (bin_id, generated_at)"
    )

    # ──────────────────────────────────────────────────────────────────────
    # 4. Rewards Engine
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS rewards_ledger (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id             UUID NOT NULL,
        event_id            UUID,
        reason              VARCHAR(255) NOT NULL,
        points_delta        INTEGER NOT NULL,
        reward_name         VARCHAR(255),
        scoring_version     VARCHAR(20),
        created_at          TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_rewards_ledger_event UNIQUE (event_id)
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_rewards_ledger_user_created "
        "ON rewards_ledger (user_id, created_at)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS reward_balances (
        user_id             UUID PRIMARY KEY,
        total_points        INTEGER NOT NULL DEFAULT 0 CHECK (total_points >= 0),
        lifetime_earned     INTEGER NOT NULL DEFAULT 0,
        lifetime_redeemed   INTEGER NOT NULL DEFAULT 0,
        updated_at          TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)


def downgrade() -> None:
    drop_order = [
        "reward_balances", "rewards_ledger", "bin_insights",
        "anomalies", "daily_bin_metrics",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl} CASCADE")
