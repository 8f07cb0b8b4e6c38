"""initial schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "entities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("aliases_json", sa.JSON(), nullable=False),
        sa.Column("restaurant_attribute_ids_json", sa.JSON(), nullable=False),
        sa.Column("restaurant_quality_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("general_praise_upvotes", sa.Integer(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", "type", name="uq_entities_name_type"),
    )
    op.create_index("ix_entities_name", "entities", ["name"], unique=False)
    op.create_index("ix_entities_type", "entities", ["type"], unique=False)

    op.create_table(
        "connections",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("restaurant_id", sa.Integer(), nullable=False),
        sa.Column("food_id", sa.Integer(), nullable=False),
        sa.Column("category_ids_json", sa.JSON(), nullable=False),
        sa.Column("food_attribute_ids_json", sa.JSON(), nullable=False),
        sa.Column("mention_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_upvotes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("recent_mention_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_mentioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("activity_level", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("food_quality_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("decayed_mention_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("decayed_upvote_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("decayed_scores_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("boost_last_applied_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["restaurant_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["food_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_connections_restaurant_id", "connections", ["restaurant_id"], unique=False)
    op.create_index("ix_connections_food_id", "connections", ["food_id"], unique=False)
    op.create_index("ix_connections_restaurant_food", "connections", ["restaurant_id", "food_id"], unique=False)

    op.create_table(
        "category_aggregates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("restaurant_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("mentions_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_upvotes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_mentioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_mentioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("decayed_mention_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("decayed_upvote_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("decayed_scores_updated_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["restaurant_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("restaurant_id", "category_id", name="uq_category_aggregates_restaurant_category"),
    )
    op.create_index("ix_category_aggregates_restaurant_id", "category_aggregates", ["restaurant_id"], unique=False)
    op.create_index("ix_category_aggregates_category_id", "category_aggregates", ["category_id"], unique=False)

    op.create_table(
        "boost_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("restaurant_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("food_attribute_ids_json", sa.JSON(), nullable=False),
        sa.Column("mention_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["restaurant_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["category_id"], ["entities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_boost_events_restaurant_created",
        "boost_events",
        ["restaurant_id", "mention_created_at"],
        unique=False,
    )
    op.create_index("ix_boost_events_category_id", "boost_events", ["category_id"], unique=False)

    op.create_table(
        "source_ledger",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("pipeline", sa.String(length=64), nullable=False),
        sa.Column("source_id", sa.String(length=255), nullable=False),
        sa.Column("subreddit", sa.String(length=255), nullable=True),
        sa.Column("batch_id", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pipeline", "source_id", name="uq_source_ledger_pipeline_source"),
    )
    op.create_index("ix_source_ledger_batch_id", "source_ledger", ["batch_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_source_ledger_batch_id", table_name="source_ledger")
    op.drop_table("source_ledger")
    op.drop_index("ix_boost_events_category_id", table_name="boost_events")
    op.drop_index("ix_boost_events_restaurant_created", table_name="boost_events")
    op.drop_table("boost_events")
    op.drop_index("ix_category_aggregates_category_id", table_name="category_aggregates")
    op.drop_index("ix_category_aggregates_restaurant_id", table_name="category_aggregates")
    op.drop_table("category_aggregates")
    op.drop_index("ix_connections_restaurant_food", table_name="connections")
    op.drop_index("ix_connections_food_id", table_name="connections")
    op.drop_index("ix_connections_restaurant_id", table_name="connections")
    op.drop_table("connections")
    op.drop_index("ix_entities_type", table_name="entities")
    op.drop_index("ix_entities_name", table_name="entities")
    op.drop_table("entities")
