"""checkout, reservation and attribution tables

Revision ID: 3b1f0c9d2a71
Revises:
Create Date: 2026-10-19 10:12:31.204118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1f0c9d2a71'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    op.create_table(
        "commerce_connections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("platform", sa.String(32), nullable=False),
        sa.Column("shop_domain", sa.String(255), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_commerce_connections_public_id", "commerce_connections", ["public_id"], unique=True)
    op.create_index("ix_commerce_connections_creator_id", "commerce_connections", ["creator_id"])

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("connection_id", sa.Integer(), sa.ForeignKey("commerce_connections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("sku", sa.String(128), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("stock_qty", sa.Integer(), nullable=False),
        _ts("stock_synced_at"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_variants_public_id", "variants", ["public_id"], unique=True)
    op.create_index("ix_variants_connection_id", "variants", ["connection_id"])
    op.create_index("uq_variants_connection_external", "variants", ["connection_id", "external_id"], unique=True)

    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("offer_type", sa.String(32), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        _ts("starts_at"),
        _ts("ends_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_offers_public_id", "offers", ["public_id"], unique=True)
    op.create_index("ix_offers_creator_id", "offers", ["creator_id"])

    op.create_table(
        "attribution_contexts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("surface", sa.String(32), nullable=False),
        sa.Column("platform", sa.String(32), nullable=True),
        sa.Column("live_session_id", sa.String(64), nullable=True),
        sa.Column("stream_id", sa.String(64), nullable=True),
        sa.Column("replay_id", sa.String(64), nullable=True),
        sa.Column("moment_id", sa.String(64), nullable=True),
        sa.Column("platform_stream_id", sa.String(128), nullable=True),
        sa.Column("platform_video_id", sa.String(128), nullable=True),
        sa.Column("campaign", sa.String(128), nullable=True),
        sa.Column("source", sa.String(128), nullable=True),
        sa.Column("medium", sa.String(128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_attribution_contexts_public_id", "attribution_contexts", ["public_id"], unique=True)
    op.create_index("ix_attribution_contexts_creator_id", "attribution_contexts", ["creator_id"])

    op.create_table(
        "short_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("attribution_context_id", sa.Integer(), sa.ForeignKey("attribution_contexts.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        _ts("expires_at"),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("revoked_at"),
        sa.Column("max_clicks", sa.Integer(), nullable=True),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("last_clicked_at"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_short_links_code", "short_links", ["code"], unique=True)
    op.create_index("ix_short_links_creator_id", "short_links", ["creator_id"])
    op.create_index("ix_short_links_offer_id", "short_links", ["offer_id"])

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False, unique=True),
        sa.Column("short_link_id", sa.Integer(), sa.ForeignKey("short_links.id"), nullable=True),
        sa.Column("attribution_context_id", sa.Integer(), sa.ForeignKey("attribution_contexts.id"), nullable=True),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=True),
        sa.Column("connection_id", sa.Integer(), sa.ForeignKey("commerce_connections.id"), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column("subtotal", sa.Integer(), nullable=False),
        sa.Column("discount", sa.Integer(), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        _ts("expires_at", nullable=False),
        sa.Column("external_checkout_url", sa.String(2048), nullable=True),
        sa.Column("external_order_ref", sa.String(255), nullable=True),
        sa.Column("visitor_id", sa.String(128), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        _ts("confirmed_at"),
        _ts("cancelled_at"),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        _ts("expired_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.CheckConstraint("total >= 0 AND total = subtotal - discount", name="ck_checkout_sessions_total"),
    )
    op.create_index("ix_checkout_sessions_public_id", "checkout_sessions", ["public_id"], unique=True)
    op.create_index("ix_checkout_sessions_short_link_id", "checkout_sessions", ["short_link_id"])
    op.create_index("ix_checkout_sessions_creator_key", "checkout_sessions", ["creator_id", "idempotency_key"])
    op.create_index("ix_checkout_sessions_status_expires", "checkout_sessions", ["status", "expires_at"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("variants.id"), nullable=False),
        sa.Column("checkout_session_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        _ts("expires_at", nullable=False),
        sa.Column("release_reason", sa.String(32), nullable=True),
        _ts("confirmed_at"),
        _ts("released_at"),
        _ts("created_at", nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
    )
    op.create_index("ix_reservations_public_id", "reservations", ["public_id"], unique=True)
    op.create_index("ix_reservations_checkout_session_id", "reservations", ["checkout_session_id"])
    op.create_index("ix_reservations_variant_status", "reservations", ["variant_id", "status"])
    op.create_index("ix_reservations_status_expires", "reservations", ["status", "expires_at"])


def downgrade():
    op.drop_table("reservations")
    op.drop_table("checkout_sessions")
    op.drop_table("short_links")
    op.drop_table("attribution_contexts")
    op.drop_table("offers")
    op.drop_table("variants")
    op.drop_table("commerce_connections")
