import threading
import time
from datetime import date

import pytest
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

from cache import CacheKind, TTLCache, cache_key
from conftest import expense
from coordinator import FinancialCoordinator, summarize
from database import create_db_engine, session_scope
from models import BudgetPeriod, CardType, Frequency, TransactionType
from schemas import (
    BudgetIn,
    CardIn,
    CardPatch,
    CategoryIn,
    CategoryPatch,
    RecurringTransactionIn,
    TransactionIn,
    TransactionPatch,
)
from services import CategoryService, StoreWriteError, TransactionService


def _key(coordinator, kind: CacheKind) -> str:
    return cache_key(kind, coordinator.user_id)


def _fill_cache(coordinator) -> None:
    for kind in CacheKind:
        coordinator.cache.set(_key(coordinator, kind), ["sentinel"])


def _present(coordinator) -> set[CacheKind]:
    return {kind for kind in CacheKind if coordinator.cache.has(_key(coordinator, kind))}


def test_load_populates_collections_and_cache(coordinator, seeded) -> None:
    fresh = FinancialCoordinator(
        coordinator.user_id, TTLCache(), session_factory=coordinator._session_factory
    )
    fresh.load()

    assert [c.name for c in fresh.categories] == ["Mercado", "Salário"]
    assert [c.name for c in fresh.cards] == ["Nubank"]
    assert fresh.transactions == []
    assert fresh.is_loading is False
    assert fresh.cache.get(_key(fresh, CacheKind.cards)) == fresh.cards


def test_summary_totals(coordinator, seeded) -> None:
    card = seeded["card"].id
    coordinator.add_transaction(
        TransactionIn(
            description="Salário",
            amount_cents=120,
            type=TransactionType.income,
            category_id=seeded["salary"].id,
            card_id=card,
            transaction_date=date(2024, 5, 5),
        )
    )
    coordinator.add_transaction(
        expense(seeded["groceries"].id, card, 40, date(2024, 5, 6))
    )

    summary = coordinator.get_financial_summary()

    assert summary.receitas == 120
    assert summary.despesas == 40
    assert summary.saldo == 80
    assert summary.categorias == 2
    assert summary.top_categorias == ["Mercado"]


def test_summary_is_cached_until_a_transaction_changes(coordinator, seeded) -> None:
    card = seeded["card"].id
    first = coordinator.get_financial_summary()
    assert coordinator.cache.has(_key(coordinator, CacheKind.summary))
    assert coordinator.get_financial_summary() is first

    coordinator.add_transaction(expense(seeded["groceries"].id, card, 500, date(2024, 5, 6)))

    assert not coordinator.cache.has(_key(coordinator, CacheKind.summary))
    assert coordinator.get_financial_summary().despesas == 500


def test_summary_of_empty_list() -> None:
    summary = summarize([])
    assert (summary.receitas, summary.despesas, summary.saldo) == (0, 0, 0)
    assert summary.top_categorias == []


@pytest.mark.parametrize(
    "mutate, cleared",
    [
        (
            lambda c, s: c.add_transaction(
                expense(s["groceries"].id, s["card"].id, 100, date(2024, 1, 2))
            ),
            {CacheKind.transactions, CacheKind.budgets, CacheKind.summary},
        ),
        (
            lambda c, s: c.update_category(s["groceries"].id, CategoryPatch(color="#000000")),
            {
                CacheKind.categories,
                CacheKind.transactions,
                CacheKind.budgets,
                CacheKind.summary,
            },
        ),
        (
            lambda c, s: c.update_card(s["card"].id, CardPatch(is_active=False)),
            {CacheKind.cards, CacheKind.transactions, CacheKind.summary},
        ),
        (
            lambda c, s: c.add_budget(
                BudgetIn(
                    category_id=s["groceries"].id,
                    limit_cents=1000,
                    period=BudgetPeriod.yearly,
                    year=2024,
                )
            ),
            set(),
        ),
    ],
)
def test_mutations_clear_dependent_cache_entries(
    coordinator, seeded, mutate, cleared
) -> None:
    _fill_cache(coordinator)
    mutate(coordinator, seeded)
    assert _present(coordinator) == set(CacheKind) - cleared


def test_budget_mutation_writes_its_own_entry(coordinator, seeded) -> None:
    _fill_cache(coordinator)
    budget = coordinator.add_budget(
        BudgetIn(
            category_id=seeded["groceries"].id,
            limit_cents=1000,
            period=BudgetPeriod.monthly,
            year=2024,
            month=3,
        )
    )
    assert coordinator.cache.get(_key(coordinator, CacheKind.budgets)) == [budget]


def test_transactions_are_prepended_locally(coordinator, seeded) -> None:
    card = seeded["card"].id
    first = coordinator.add_transaction(
        expense(seeded["groceries"].id, card, 100, date(2024, 1, 2))
    )
    second = coordinator.add_transaction(
        expense(seeded["groceries"].id, card, 200, date(2024, 1, 3))
    )
    assert [t.id for t in coordinator.transactions] == [second.id, first.id]
    assert second.category.name == "Mercado"


def test_update_and_delete_transaction(coordinator, seeded) -> None:
    txn = coordinator.add_transaction(
        expense(seeded["groceries"].id, seeded["card"].id, 100, date(2024, 1, 2))
    )
    updated = coordinator.update_transaction(txn.id, TransactionPatch(amount_cents=250))
    assert updated.amount_cents == 250
    assert coordinator.transactions[0].amount_cents == 250

    coordinator.delete_transaction(txn.id)
    assert coordinator.transactions == []


def test_deleting_category_in_use_fails_and_keeps_state(coordinator, seeded) -> None:
    groceries = seeded["groceries"]
    txn = coordinator.add_transaction(
        expense(groceries.id, seeded["card"].id, 100, date(2024, 1, 2))
    )
    categories_before = list(coordinator.categories)
    _fill_cache(coordinator)

    with pytest.raises(StoreWriteError):
        coordinator.delete_category(groceries.id)

    assert coordinator.categories == categories_before
    assert _present(coordinator) == set(CacheKind)

    coordinator.delete_transaction(txn.id)
    coordinator.delete_category(groceries.id)

    assert groceries.id not in [c.id for c in coordinator.categories]
    assert not coordinator.cache.has(_key(coordinator, CacheKind.categories))
    assert not coordinator.cache.has(_key(coordinator, CacheKind.summary))


def test_rejected_write_leaves_cache_untouched(coordinator, seeded) -> None:
    _fill_cache(coordinator)
    with pytest.raises(ValueError, match="Category type mismatch"):
        coordinator.add_transaction(
            expense(seeded["salary"].id, seeded["card"].id, 100, date(2024, 1, 2))
        )
    assert coordinator.transactions == []
    assert _present(coordinator) == set(CacheKind)


def test_unknown_ids_raise_not_found(coordinator, seeded) -> None:
    with pytest.raises(ValueError, match="Card not found"):
        coordinator.update_card(9999, CardPatch(name="x"))
    with pytest.raises(ValueError, match="Category not found"):
        coordinator.delete_category(9999)


def _rent(coordinator, seeded, **overrides):
    payload = {
        "description": "Aluguel",
        "amount_cents": 150000,
        "type": TransactionType.expense,
        "category_id": seeded["groceries"].id,
        "card_id": seeded["card"].id,
        "frequency": Frequency.monthly,
        "start_date": date(2024, 1, 31),
    }
    payload.update(overrides)
    return coordinator.add_recurring_transaction(RecurringTransactionIn(**payload))


def test_execute_recurring_posts_and_advances(coordinator, seeded) -> None:
    rent = _rent(coordinator, seeded)

    txn = coordinator.execute_recurring_transaction(rent.id, today=date(2024, 3, 5))

    assert txn.transaction_date == date(2024, 3, 5)
    assert txn.is_recurring is True
    assert txn.recurring_transaction_id == rent.id
    assert coordinator.transactions[0].id == txn.id
    advanced = coordinator.recurring_transactions[0]
    assert advanced.next_execution_date == date(2024, 2, 29)
    assert advanced.is_active is True
    assert not coordinator.cache.has(_key(coordinator, CacheKind.transactions))
    assert coordinator.cache.has(_key(coordinator, CacheKind.recurring))


def test_execute_recurring_past_end_date_deactivates(coordinator, seeded) -> None:
    rent = _rent(coordinator, seeded, end_date=date(2024, 2, 15))
    coordinator.execute_recurring_transaction(rent.id, today=date(2024, 1, 31))
    assert coordinator.recurring_transactions[0].is_active is False
    assert coordinator.active_recurring() == []


def test_execute_unknown_recurring_returns_none(coordinator, seeded) -> None:
    assert coordinator.execute_recurring_transaction(4242) is None
    assert coordinator.transactions == []


def test_toggle_recurring(coordinator, seeded) -> None:
    rent = _rent(coordinator, seeded)
    assert coordinator.toggle_recurring_transaction(rent.id).is_active is False
    assert coordinator.toggle_recurring_transaction(rent.id).is_active is True
    with pytest.raises(ValueError):
        coordinator.toggle_recurring_transaction(4242)


def test_cached_read_is_revalidated_in_background(
    session_factory, coordinator, seeded
) -> None:
    coordinator.refresh()
    pending = []
    other = FinancialCoordinator(
        coordinator.user_id,
        coordinator.cache,
        session_factory=session_factory,
        run_in_background=pending.append,
    )
    with session_scope(session_factory) as session:
        CategoryService(session, coordinator.user_id).create(
            CategoryIn(name="Lazer", type=TransactionType.expense)
        )

    other.load()
    assert [c.name for c in other.categories] == ["Mercado", "Salário"]
    assert len(pending) == 3

    for job in pending:
        job()

    assert [c.name for c in other.categories] == ["Lazer", "Mercado", "Salário"]
    cached = other.cache.get(_key(other, CacheKind.categories))
    assert [c.name for c in cached] == ["Lazer", "Mercado", "Salário"]


def test_background_transaction_change_drops_cached_summary(
    session_factory, coordinator, seeded
) -> None:
    coordinator.refresh()
    pending = []
    other = FinancialCoordinator(
        coordinator.user_id,
        coordinator.cache,
        session_factory=session_factory,
        run_in_background=pending.append,
    )
    with session_scope(session_factory) as session:
        TransactionService(session, coordinator.user_id).create(
            expense(seeded["groceries"].id, seeded["card"].id, 4500, date(2024, 5, 2))
        )

    other.load()
    assert other.get_financial_summary().despesas == 0
    assert other.cache.has(_key(other, CacheKind.summary))

    for job in pending:
        job()

    assert not other.cache.has(_key(other, CacheKind.summary))
    assert other.get_financial_summary().despesas == 4500


def test_concurrent_adds_keep_every_transaction(
    monkeypatch, session_factory, coordinator, seeded
) -> None:
    store_lock = threading.Lock()
    write = coordinator._write
    current = coordinator._current

    def serialized_write(kind, op):
        with store_lock:
            return write(kind, op)

    def slow_current(kind):
        items = current(kind)
        time.sleep(0.05)
        return items

    monkeypatch.setattr(coordinator, "_write", serialized_write)
    monkeypatch.setattr(coordinator, "_current", slow_current)

    start = threading.Barrier(2)

    def add(amount: int) -> None:
        start.wait()
        coordinator.add_transaction(
            expense(seeded["groceries"].id, seeded["card"].id, amount, date(2024, 5, 3))
        )

    threads = [threading.Thread(target=add, args=(amount,)) for amount in (100, 200)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    with session_scope(session_factory) as session:
        stored = {t.id for t in TransactionService(session, coordinator.user_id).list_all()}
    assert len(stored) == 2
    assert {t.id for t in coordinator.transactions} == stored


def test_read_failure_degrades_to_empty_without_caching(profile) -> None:
    broken = create_db_engine("sqlite://", poolclass=StaticPool)
    cache = TTLCache()
    coord = FinancialCoordinator(
        profile.id, cache, session_factory=sessionmaker(bind=broken)
    )
    coord.load()
    assert coord.categories == []
    assert coord.budgets == []
    assert len(cache) == 0
    broken.dispose()


def test_refresh_ignores_cached_copies(session_factory, coordinator, seeded) -> None:
    with session_scope(session_factory) as session:
        CategoryService(session, coordinator.user_id).create(
            CategoryIn(name="Lazer", type=TransactionType.expense)
        )
    coordinator.get_financial_summary()
    coordinator.refresh()
    assert len(coordinator.categories) == 3
    assert not coordinator.cache.has(_key(coordinator, CacheKind.summary))


def test_teardown_clears_state_and_user_keys(coordinator, seeded) -> None:
    coordinator.cache.set("categories_999", ["other user"])
    _fill_cache(coordinator)
    coordinator.teardown()
    assert coordinator.categories == []
    assert coordinator.cards == []
    assert _present(coordinator) == set()
    assert coordinator.cache.has("categories_999")


def test_budget_progress_statuses(coordinator, seeded) -> None:
    groceries = seeded["groceries"].id
    card = seeded["card"].id
    coordinator.add_budget(
        BudgetIn(
            category_id=groceries,
            limit_cents=10000,
            period=BudgetPeriod.monthly,
            year=2024,
            month=3,
        )
    )
    coordinator.add_budget(
        BudgetIn(
            category_id=groceries, limit_cents=9000, period=BudgetPeriod.yearly, year=2024
        )
    )
    coordinator.add_transaction(expense(groceries, card, 8500, date(2024, 3, 10)))
    coordinator.add_transaction(expense(groceries, card, 1000, date(2024, 4, 10)))

    march = coordinator.budget_progress(2024, 3)
    by_period = {p.period: p for p in march}

    monthly = by_period[BudgetPeriod.monthly]
    assert monthly.spent_cents == 8500
    assert monthly.percent == 85.0
    assert monthly.status == "warning"
    assert monthly.category_name == "Mercado"

    yearly = by_period[BudgetPeriod.yearly]
    assert yearly.spent_cents == 9500
    assert yearly.status == "exceeded"

    assert coordinator.budget_progress(2024, 5) == [yearly]
    assert coordinator.budget_progress(2023) == []


def test_transaction_prerequisites(coordinator) -> None:
    empty = coordinator.transaction_prerequisites()
    assert empty.can_create is False
    assert empty.missing_items == ["categories", "cards"]

    coordinator.add_category(CategoryIn(name="Mercado", type=TransactionType.expense))
    card = coordinator.add_card(CardIn(name="Inter", type=CardType.debit, bank="Inter"))
    assert coordinator.transaction_prerequisites().can_create is True

    coordinator.update_card(card.id, CardPatch(is_active=False))
    prereqs = coordinator.transaction_prerequisites()
    assert prereqs.can_create is False
    assert prereqs.missing_items == ["cards"]


def test_navigation_warms_related_collections(session_factory, profile, seeded) -> None:
    cache = TTLCache()
    scheduled = []
    coord = FinancialCoordinator(
        profile.id,
        cache,
        session_factory=session_factory,
        schedule=lambda func, delay, job_id: scheduled.append(func),
    )

    assert coord.prefetch_related_data("/categorias") == ["/transacoes", "/orcamento"]
    assert len(cache) == 0

    scheduled[-1]()

    assert cache.has(cache_key(CacheKind.transactions, profile.id))
    assert cache.has(cache_key(CacheKind.budgets, profile.id))
    assert [c.name for c in cache.get(cache_key(CacheKind.categories, profile.id))] == [
        "Mercado",
        "Salário",
    ]
