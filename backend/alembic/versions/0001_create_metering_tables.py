"""Create usage, credit, idempotency and entitlement tables.

Revision ID: 0001_metering
Revises:
Create Date: 2026-03-02 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_metering"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _scope_columns():
    return [
        sa.Column("scope_kind", sa.String(16), nullable=False),
        sa.Column("scope_key", sa.String(512), nullable=False),
        sa.Column("agency_id", sa.String(255), nullable=False),
        sa.Column("sub_account_id", sa.String(255), nullable=True),
    ]


def upgrade():
    """Create the five metering tables and their indexes."""
    op.create_table(
        "usage_event",
        *_base_columns(),
        *_scope_columns(),
        sa.Column("feature_key", sa.String(255), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("action_key", sa.String(255), nullable=True),
        sa.Column("operation_kind", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.UniqueConstraint(
            "scope_key", "operation_kind", "idempotency_key", name="uq_usage_event_idempotency"
        ),
    )
    op.create_index(
        "idx_usage_event_scope_feature_created",
        "usage_event",
        ["scope_key", "feature_key", "created_at"],
    )
    op.create_index(
        "idx_usage_event_agency_feature_created",
        "usage_event",
        ["agency_id", "feature_key", "created_at"],
    )

    op.create_table(
        "credit_transaction",
        *_base_columns(),
        *_scope_columns(),
        sa.Column("feature_key", sa.String(255), nullable=False),
        sa.Column("sequence", sa.BigInteger(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(20, 6), nullable=False),
        sa.Column("balance_after", sa.Numeric(20, 6), nullable=False),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("operation_kind", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.UniqueConstraint(
            "scope_key",
            "operation_kind",
            "idempotency_key",
            name="uq_credit_transaction_idempotency",
        ),
        sa.UniqueConstraint(
            "scope_key", "feature_key", "sequence", name="uq_credit_transaction_sequence"
        ),
    )
    op.create_index(
        "idx_credit_transaction_scope_created", "credit_transaction", ["scope_key", "created_at"]
    )

    op.create_table(
        "credit_position",
        *_base_columns(),
        *_scope_columns(),
        sa.Column("feature_key", sa.String(255), nullable=False),
        sa.Column("balance", sa.Numeric(20, 6), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Numeric(20, 6), nullable=False, server_default="0"),
        sa.Column("lifetime_credited", sa.Numeric(20, 6), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(16), nullable=False),
        sa.Column("last_sequence", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("next_expiry_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("scope_key", "feature_key", name="uq_credit_position_scope_feature"),
    )
    op.create_index("idx_credit_position_next_expiry", "credit_position", ["next_expiry_at"])

    op.create_table(
        "idempotency_record",
        *_base_columns(),
        sa.Column("scope_key", sa.String(512), nullable=False),
        sa.Column("operation_kind", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("fingerprint", sa.String(128), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.UniqueConstraint(
            "scope_key", "operation_kind", "idempotency_key", name="uq_idempotency_record_key"
        ),
    )

    op.create_table(
        "entitlement",
        *_base_columns(),
        sa.Column("agency_id", sa.String(255), nullable=False),
        sa.Column("sub_account_id", sa.String(255), nullable=True),
        sa.Column("feature_key", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("category", sa.String(64), nullable=False, server_default="general"),
        sa.Column("unit", sa.String(32), nullable=False, server_default="units"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("limit", sa.Integer(), nullable=True),
        sa.Column("is_unlimited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metering_type", sa.String(16), nullable=False, server_default="COUNT"),
        sa.Column("period", sa.String(16), nullable=False, server_default="MONTHLY"),
        sa.Column("enforcement", sa.String(16), nullable=False, server_default="HARD"),
        sa.Column("overage_mode", sa.String(32), nullable=False, server_default="NONE"),
        sa.Column("credits_per_unit", sa.Numeric(20, 6), nullable=False, server_default="1"),
        sa.Column("credit_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("credit_expires", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recurring_credit_grant", sa.Numeric(20, 6), nullable=True),
        sa.Column("rollover_credits", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint(
            "agency_id", "sub_account_id", "feature_key", name="uq_entitlement_scope_feature"
        ),
    )


def downgrade():
    """Drop the metering tables."""
    op.drop_table("entitlement")
    op.drop_table("idempotency_record")
    op.drop_index("idx_credit_position_next_expiry", table_name="credit_position")
    op.drop_table("credit_position")
    op.drop_index("idx_credit_transaction_scope_created", table_name="credit_transaction")
    op.drop_table("credit_transaction")
    op.drop_index("idx_usage_event_agency_feature_created", table_name="usage_event")
    op.drop_index("idx_usage_event_scope_feature_created", table_name="usage_event")
    op.drop_table("usage_event")
