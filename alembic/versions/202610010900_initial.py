"""initial ledger schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


ACCOUNT_TYPES = ("bank", "broker", "credit", "cash", "stock")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "currencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticker", sa.String(length=10), nullable=False, unique=True),
        sa.Column("symbol", sa.String(length=10)),
        sa.Column("name", sa.String(length=100)),
        *_timestamps(),
    )

    op.create_table(
        "exchange_rates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "base_currency_id",
            sa.Integer(),
            sa.ForeignKey("currencies.id"),
            nullable=False,
        ),
        sa.Column(
            "target_currency_id",
            sa.Integer(),
            sa.ForeignKey("currencies.id"),
            nullable=False,
        ),
        sa.Column("rate", sa.String(length=40), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "base_currency_id", "target_currency_id", name="uq_exchange_rate_pair"
        ),
    )

    op.create_table(
        "asset_providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("icon", sa.String(length=200)),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="accounttype"), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column(
            "asset_provider_id", sa.Integer(), sa.ForeignKey("asset_providers.id")
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="accounttype"), nullable=False),
        sa.Column(
            "currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=False
        ),
        sa.Column("balance", sa.String(length=40), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint(
            "client_id", "asset_provider_id", "name", name="uq_account_client_name"
        ),
    )
    op.create_index("ix_accounts_client_type", "accounts", ["client_id", "type"])

    for table in ("transactions", "expenses"):
        columns = [
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("client_id", sa.Integer(), nullable=False),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
            sa.Column(
                "currency_id",
                sa.Integer(),
                sa.ForeignKey("currencies.id"),
                nullable=False,
            ),
        ]
        if table == "transactions":
            columns.append(sa.Column("name", sa.String(length=120), nullable=False))
        columns += [
            sa.Column("category", sa.String(length=60), nullable=False),
            sa.Column("amount", sa.String(length=40), nullable=False),
        ]
        if table == "transactions":
            columns.append(sa.Column("income", sa.Boolean(), nullable=False))
        columns += [
            sa.Column("remarks", sa.Text()),
            sa.Column("executed_at", sa.DateTime(), nullable=False),
            *_timestamps(),
        ]
        op.create_table(table, *columns)
        op.create_index(
            f"ix_{table}_client_executed", table, ["client_id", "executed_at"]
        )
        op.create_index(f"ix_{table}_account", table, ["account_id"])

    op.create_table(
        "future_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "currency_id", sa.Integer(), sa.ForeignKey("currencies.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("income", sa.Boolean(), nullable=False),
        sa.Column("rolling", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frequency_secs", sa.Integer()),
        sa.Column("remarks", sa.Text()),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "NOT rolling OR (frequency_secs IS NOT NULL AND frequency_secs > 0)",
            name="ck_future_payment_rolling_frequency",
        ),
    )
    op.create_index(
        "ix_future_payments_scheduled", "future_payments", ["scheduled_at"]
    )
    op.create_index("ix_future_payments_client", "future_payments", ["client_id"])


def downgrade():
    op.drop_index("ix_future_payments_client", table_name="future_payments")
    op.drop_index("ix_future_payments_scheduled", table_name="future_payments")
    op.drop_table("future_payments")
    for table in ("expenses", "transactions"):
        op.drop_index(f"ix_{table}_account", table_name=table)
        op.drop_index(f"ix_{table}_client_executed", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_accounts_client_type", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("asset_providers")
    op.drop_table("exchange_rates")
    op.drop_table("currencies")
