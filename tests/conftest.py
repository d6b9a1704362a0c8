from datetime import date

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from cache import TTLCache
from coordinator import FinancialCoordinator
from database import Base, create_db_engine, session_scope
from models import CardType, TransactionType
from schemas import CardIn, CategoryIn, SessionIn, TransactionIn
from services import ProfileService


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def profile(session_factory):
    with session_scope(session_factory) as session:
        return ProfileService(session).get_or_create(
            SessionIn(email="ana@example.com", name="Ana")
        )


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def coordinator(session_factory, profile, cache) -> FinancialCoordinator:
    coord = FinancialCoordinator(
        profile.id, cache, session_factory=session_factory, prefetch_enabled=False
    )
    coord.load()
    return coord


@pytest.fixture
def seeded(coordinator):
    """An expense category, an income category and a card."""
    groceries = coordinator.add_category(
        CategoryIn(name="Mercado", type=TransactionType.expense)
    )
    salary = coordinator.add_category(
        CategoryIn(name="Salário", type=TransactionType.income)
    )
    card = coordinator.add_card(CardIn(name="Nubank", type=CardType.credit, bank="Nubank"))
    return {"groceries": groceries, "salary": salary, "card": card}


def expense(category_id: int, card_id: int, amount_cents: int, day: date, **kwargs):
    return TransactionIn(
        description=kwargs.pop("description", "Compra"),
        amount_cents=amount_cents,
        type=TransactionType.expense,
        category_id=category_id,
        card_id=card_id,
        transaction_date=day,
        **kwargs,
    )
