"""add posted amount to ledger entries

Revision ID: 202610180900
Revises: 202610010900
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = "202610010900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    for table in ("transactions", "expenses"):
        with op.batch_alter_table(table) as batch_op:
            batch_op.add_column(sa.Column("posted_amount", sa.String(length=40)))


def downgrade() -> None:
    for table in ("expenses", "transactions"):
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("posted_amount")
