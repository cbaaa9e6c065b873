"""Delivery IQ schema — outcome records and survival curves.

Creates the two tables owned by the engine. `shipments` and `care_tickets`
belong to upstream services and are not created here.

Revision ID: delivery_iq_001
Revises:
Create Date: 2026-10-16
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "delivery_iq_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # Outcome Records (one per shipment)
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS delivery_outcomes (
        id                          SERIAL PRIMARY KEY,
        shipment_id                 VARCHAR(64) UNIQUE NOT NULL,
        tracking_number             VARCHAR(100),
        carrier                     VARCHAR(100) NOT NULL,
        carrier_service             VARCHAR(255),
        client_id                   VARCHAR(64),

        outcome                     VARCHAR(20) NOT NULL,
        outcome_date                TIMESTAMPTZ,
        outcome_source              VARCHAR(30),

        zone_used                   INTEGER,
        zone_bucket                 VARCHAR(20) NOT NULL,
        service_bucket              VARCHAR(20) NOT NULL,
        season_bucket               VARCHAR(20) NOT NULL,

        destination_state           VARCHAR(20),
        destination_country         VARCHAR(5),
        destination_region          VARCHAR(20),

        transit_start_date          DATE NOT NULL,
        transit_start_month         INTEGER NOT NULL,
        transit_start_week          INTEGER NOT NULL,

        total_transit_days          DOUBLE PRECISION,
        days_to_out_for_delivery    DOUBLE PRECISION,
        days_last_mile              DOUBLE PRECISION,

        observed_days               DOUBLE PRECISION NOT NULL,
        is_censored                 BOOLEAN NOT NULL,

        has_exception               BOOLEAN NOT NULL DEFAULT FALSE,
        has_delivery_attempt_failed BOOLEAN NOT NULL DEFAULT FALSE,
        event_count                 INTEGER NOT NULL DEFAULT 0,

        created_at                  TIMESTAMPTZ DEFAULT NOW(),
        updated_at                  TIMESTAMPTZ DEFAULT NOW(),

        CONSTRAINT ck_delivery_outcomes_censored CHECK ((outcome = 'censored') = is_censored),
        CONSTRAINT ck_delivery_outcomes_observed_days CHECK (observed_days >= 0)
    )
    """)

    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_delivery_outcomes_segment
        ON delivery_outcomes (carrier, service_bucket, zone_bucket, season_bucket)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_delivery_outcomes_outcome ON delivery_outcomes (outcome)")

    # ──────────────────────────────────────────────────────────────────────
    # Survival Curves (replaced by key; carrier_service is nullable, no UNIQUE)
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS survival_curves (
        id                  SERIAL PRIMARY KEY,
        carrier             VARCHAR(100) NOT NULL,
        carrier_service     VARCHAR(255),
        service_bucket      VARCHAR(20) NOT NULL,
        zone_bucket         VARCHAR(20) NOT NULL,
        season_bucket       VARCHAR(20) NOT NULL,

        curve_data          JSONB NOT NULL DEFAULT '[]',
        sample_size         INTEGER NOT NULL,
        delivered_count     INTEGER NOT NULL,
        lost_count          INTEGER NOT NULL,
        censored_count      INTEGER NOT NULL,

        median_days         INTEGER,
        p75_days            INTEGER,
        p90_days            INTEGER,
        p95_days            INTEGER,
        confidence_level    VARCHAR(20) NOT NULL,

        computed_at         TIMESTAMPTZ DEFAULT NOW(),

        CONSTRAINT ck_survival_curves_counts
            CHECK (delivered_count + lost_count + censored_count = sample_size)
    )
    """)

    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_survival_curves_key
        ON survival_curves (carrier, service_bucket, zone_bucket, season_bucket)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_survival_curves_zone ON survival_curves (zone_bucket)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS survival_curves CASCADE")
    op.execute("DROP TABLE IF EXISTS delivery_outcomes CASCADE")
