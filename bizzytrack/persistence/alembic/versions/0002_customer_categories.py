"""customer categories

Revision ID: 0002_customer_categories
Revises: 0001_initial
Create Date: 2026-10-20 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_customer_categories"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "customer_categories",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("business_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(), nullable=False, server_default="#3B82F6"),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
        sa.UniqueConstraint("business_id", "name", name="uq_customer_categories_business_name"),
    )
    op.create_index("ix_customer_categories_business_id", "customer_categories", ["business_id"])
    # Existing customers keep working; the reference only binds rows that name a category.
    op.create_foreign_key(
        "fk_customers_category_id",
        "customers",
        "customer_categories",
        ["category_id"],
        ["id"],
    )


def downgrade() -> None:
    op.drop_constraint("fk_customers_category_id", "customers", type_="foreignkey")
    op.drop_index("ix_customer_categories_business_id", table_name="customer_categories")
    op.drop_table("customer_categories")
