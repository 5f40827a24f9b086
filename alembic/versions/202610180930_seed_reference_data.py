"""seed currencies and asset providers

Revision ID: 202610180930
Revises: 202610180900
Create Date: 2026-10-18 09:30:00.000000

"""

from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa


revision = "202610180930"
down_revision = "202610180900"
branch_labels = None
depends_on = None


CURRENCIES = [
    ("HKD", "HKD$", "Hong Kong Dollar"),
    ("USD", "USD$", "US Dollar"),
    ("GBP", "£", "Pound Sterling"),
]

ASSET_PROVIDERS = [
    ("Chase Bank (UK)", "/chase_bank_uk.svg", "bank"),
    ("HSBC (HK)", "/hsbc_hk.svg", "bank"),
    ("HSBC (UK)", "/hsbc_uk.svg", "bank"),
    ("Bank of China (HK)", "/boc_hk.svg", "bank"),
    ("Lloyds Bank (UK)", "/lloyds_uk.svg", "bank"),
    ("Citibank (HK)", "/citibank_hk.svg", "bank"),
    ("Hang Seng Bank (HK)", "/hang_seng_hk.svg", "bank"),
    ("Metro Bank (UK)", "/metro_bank_uk.svg", "bank"),
    ("Monzo (UK)", "/monzo_uk.svg", "bank"),
    ("Nationwide (UK)", "/nationwide_uk.svg", "bank"),
    ("Standard Chartered (HK)", "/standard_chartered_hk.svg", "bank"),
    ("Starling (UK)", "/starling_uk.svg", "bank"),
    ("Futu Holdings Limited (HK)", "/futu_hk.svg", "broker"),
    ("Firstrade Securities (US)", "/firstrade_us.svg", "broker"),
]

currencies = sa.table(
    "currencies",
    sa.column("ticker", sa.String),
    sa.column("symbol", sa.String),
    sa.column("name", sa.String),
    sa.column("created_at", sa.DateTime),
    sa.column("updated_at", sa.DateTime),
)

asset_providers = sa.table(
    "asset_providers",
    sa.column("name", sa.String),
    sa.column("icon", sa.String),
    sa.column("type", sa.String),
    sa.column("created_at", sa.DateTime),
    sa.column("updated_at", sa.DateTime),
)


def upgrade() -> None:
    now = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
    op.bulk_insert(
        currencies,
        [
            {
                "ticker": ticker,
                "symbol": symbol,
                "name": name,
                "created_at": now,
                "updated_at": now,
            }
            for ticker, symbol, name in CURRENCIES
        ],
    )
    op.bulk_insert(
        asset_providers,
        [
            {
                "name": name,
                "icon": icon,
                "type": provider_type,
                "created_at": now,
                "updated_at": now,
            }
            for name, icon, provider_type in ASSET_PROVIDERS
        ],
    )


def downgrade() -> None:
    op.execute(
        asset_providers.delete().where(
            asset_providers.c.name.in_([row[0] for row in ASSET_PROVIDERS])
        )
    )
    op.execute(
        currencies.delete().where(currencies.c.ticker.in_([row[0] for row in CURRENCIES]))
    )
