"""initial apteka schema with trigram indexes

Revision ID: 20241019_0001
Revises:
Create Date: 2024-10-19 12:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20241019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm;")

    op.create_table(
        "medicines",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("name_normalized", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(op.f("ix_medicines_name_normalized"), "medicines", ["name_normalized"], unique=False)
    op.create_index(
        "ix_medicines_name_normalized_gin",
        "medicines",
        [sa.text("name_normalized gin_trgm_ops")],
        unique=False,
        postgresql_using="gin",
    )

    op.create_table(
        "medicine_aliases",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("medicine_id", sa.UUID(), nullable=False),
        sa.Column("alias", sa.String(), nullable=False),
        sa.Column("alias_normalized", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("medicine_id", "alias_normalized", name="uq_medicine_alias"),
    )
    op.create_index(op.f("ix_medicine_aliases_medicine_id"), "medicine_aliases", ["medicine_id"], unique=False)
    op.create_index(
        "ix_medicine_aliases_alias_normalized_gin",
        "medicine_aliases",
        [sa.text("alias_normalized gin_trgm_ops")],
        unique=False,
        postgresql_using="gin",
    )

    op.create_table(
        "pharmacies",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "inventory_entries",
        sa.Column("pharmacy_id", sa.UUID(), nullable=False),
        sa.Column("medicine_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["pharmacy_id"], ["pharmacies.id"]),
        sa.ForeignKeyConstraint(["medicine_id"], ["medicines.id"]),
        sa.PrimaryKeyConstraint("pharmacy_id", "medicine_id"),
    )
    op.create_index(op.f("ix_inventory_entries_medicine_id"), "inventory_entries", ["medicine_id"], unique=False)

    op.create_table(
        "pharmacy_owners",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("pharmacy_id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["pharmacy_id"], ["pharmacies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pharmacy_id"),
    )
    op.create_index(op.f("ix_pharmacy_owners_chat_id"), "pharmacy_owners", ["chat_id"], unique=False)

    op.create_table(
        "catalog_imports",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("filename", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_log", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("catalog_imports")
    op.drop_index(op.f("ix_pharmacy_owners_chat_id"), table_name="pharmacy_owners")
    op.drop_table("pharmacy_owners")
    op.drop_index(op.f("ix_inventory_entries_medicine_id"), table_name="inventory_entries")
    op.drop_table("inventory_entries")
    op.drop_table("pharmacies")
    op.drop_index("ix_medicine_aliases_alias_normalized_gin", table_name="medicine_aliases")
    op.drop_index(op.f("ix_medicine_aliases_medicine_id"), table_name="medicine_aliases")
    op.drop_table("medicine_aliases")
    op.drop_index("ix_medicines_name_normalized_gin", table_name="medicines")
    op.drop_index(op.f("ix_medicines_name_normalized"), table_name="medicines")
    op.drop_table("medicines")
