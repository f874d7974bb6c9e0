"""markets, snapshots, usage_counters

Revision ID: 0001
Revises:
"""
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "markets",
        sa.Column("id", sa.String(120), primary_key=True),
        sa.Column("scope", sa.String(20), nullable=False, server_default="city"),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("state", sa.String(20), nullable=True),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("market_id", sa.String(120), sa.ForeignKey("markets.id"), nullable=False),
        sa.Column("property_type", sa.String(10), nullable=False, server_default="all"),
        sa.Column("as_of", sa.DateTime(timezone=True), nullable=False),
        sa.Column("kpis", JSONType, nullable=False),
        sa.Column("series", JSONType, nullable=False),
        sa.Column("source_meta", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_snapshots_market_type_as_of", "snapshots", ["market_id", "property_type", "as_of"],
    )
    op.create_table(
        "usage_counters",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(40), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("provider", "year", "month", name="uq_usage_counters_provider_year_month"),
    )


def downgrade():
    op.drop_table("usage_counters")
    op.drop_index("ix_snapshots_market_type_as_of", table_name="snapshots")
    op.drop_table("snapshots")
    op.drop_table("markets")
