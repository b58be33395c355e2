"""offer products

Revision ID: 8c4e27a1f5b3
Revises: 3b1f0c9d2a71
Create Date: 2026-10-19 15:40:07.518342

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4e27a1f5b3'
down_revision: Union[str, Sequence[str], None] = '3b1f0c9d2a71'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "offer_products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", sa.Integer(), sa.ForeignKey("variants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_offer_products_offer_id", "offer_products", ["offer_id"])
    op.create_index("ix_offer_products_variant_id", "offer_products", ["variant_id"])
    op.create_index("uq_offer_products_offer_variant", "offer_products", ["offer_id", "variant_id"], unique=True)


def downgrade():
    op.drop_table("offer_products")
