from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from accounts import AccountService, ReferenceDataService
from models import AccountType, Currency
from schemas import AccountIn


ROOT = Path(__file__).resolve().parents[1]


def migrate(database_url: str, revision: str = "head") -> None:
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(cfg, revision)


def test_fresh_database_can_open_an_account(tmp_path):
    database_url = f"sqlite:///{tmp_path / 'ledger.db'}"
    migrate(database_url)

    engine = create_engine(database_url)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with SessionLocal() as session:
        reference = ReferenceDataService(session)
        assert [c.ticker for c in reference.currencies()] == ["GBP", "HKD", "USD"]
        assert len(reference.providers(AccountType.bank)) == 12
        assert {p.name for p in reference.providers(AccountType.broker)} == {
            "Futu Holdings Limited (HK)",
            "Firstrade Securities (US)",
        }

        hkd = session.scalar(select(Currency).where(Currency.ticker == "HKD"))
        account = AccountService(session, client_id=1).create(
            AccountIn(name="Savings", type=AccountType.bank, currency_id=hkd.id)
        )
        assert account.id is not None
        assert account.balance.to_string() == "0"
    engine.dispose()
