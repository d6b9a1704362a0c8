"""Per-user data coordinator.

Every read and write from the API goes through a ``FinancialCoordinator``.
It keeps the five collections of the signed-in user in memory, serves them
from the shared TTL cache when it can, and keeps that cache consistent with
each successful write:

* reads check the cache first; categories, cards and transactions are then
  revalidated in the background and replaced when the store disagrees;
* writes go to the store first, and only a successful write touches local
  state, the cache entry of the mutated collection, and the entries that
  derive from it (see ``INVALIDATES``).

Read failures degrade to empty collections; write failures propagate.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Any, Callable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cache import CACHE_TTLS, CacheKind, TTLCache, cache_key, user_cache_keys
from database import SessionLocal, session_scope
from models import BudgetPeriod, TransactionType
from prefetch import PREFETCH_DELAY, ROUTE_DATA, PrefetchAdvisor
from recurrence import calculate_next_date, local_today
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetPatch,
    BudgetProgress,
    CardIn,
    CardOut,
    CardPatch,
    CategoryIn,
    CategoryOut,
    CategoryPatch,
    FinancialSummary,
    RecurringTransactionIn,
    RecurringTransactionOut,
    RecurringTransactionPatch,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    TransactionPrerequisites,
)
from services import (
    BudgetService,
    CardService,
    CategoryService,
    RecurringTransactionService,
    TransactionService,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Collection:
    attr: str
    service: type
    out: type[BaseModel]


COLLECTIONS: dict[CacheKind, _Collection] = {
    CacheKind.categories: _Collection("categories", CategoryService, CategoryOut),
    CacheKind.cards: _Collection("cards", CardService, CardOut),
    CacheKind.transactions: _Collection(
        "transactions", TransactionService, TransactionOut
    ),
    CacheKind.recurring: _Collection(
        "recurring_transactions", RecurringTransactionService, RecurringTransactionOut
    ),
    CacheKind.budgets: _Collection("budgets", BudgetService, BudgetOut),
}

REVALIDATED = (CacheKind.categories, CacheKind.cards, CacheKind.transactions)

INVALIDATES: dict[CacheKind, tuple[CacheKind, ...]] = {
    CacheKind.transactions: (
        CacheKind.transactions,
        CacheKind.budgets,
        CacheKind.summary,
    ),
    CacheKind.categories: (
        CacheKind.categories,
        CacheKind.transactions,
        CacheKind.budgets,
        CacheKind.summary,
    ),
    CacheKind.cards: (CacheKind.cards, CacheKind.transactions, CacheKind.summary),
    CacheKind.recurring: (),
    CacheKind.budgets: (),
}

BUDGET_WARNING_PERCENT = 80.0


def _serialize(items: list[BaseModel]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items], sort_keys=True)


def summarize(transactions: list[TransactionOut]) -> FinancialSummary:
    receitas = sum(t.amount_cents for t in transactions if t.type == TransactionType.income)
    despesas = sum(
        t.amount_cents for t in transactions if t.type == TransactionType.expense
    )
    by_category: dict[str, int] = defaultdict(int)
    for txn in transactions:
        if txn.type == TransactionType.expense and txn.category is not None:
            by_category[txn.category.name] += txn.amount_cents
    top = sorted(by_category.items(), key=lambda item: item[1], reverse=True)[:3]
    return FinancialSummary(
        receitas=receitas,
        despesas=despesas,
        saldo=receitas - despesas,
        categorias=len({t.category_id for t in transactions}),
        top_categorias=[name for name, _amount in top],
    )


def _in_bucket(day: date, year: int, month: Optional[int]) -> bool:
    return day.year == year and (month is None or day.month == month)


class FinancialCoordinator:
    def __init__(
        self,
        user_id: int,
        cache: TTLCache,
        session_factory: sessionmaker = SessionLocal,
        run_in_background: Optional[Callable[[Callable[[], None]], None]] = None,
        schedule: Optional[Callable[[Callable[[], None], float, str], None]] = None,
        prefetch_enabled: bool = True,
        prefetch_delay: float = PREFETCH_DELAY,
    ) -> None:
        self.user_id = user_id
        self.cache = cache
        self._session_factory = session_factory
        self._run_in_background = run_in_background or (lambda func: func())
        self.advisor = PrefetchAdvisor(
            cache,
            dispatch=self._warm_route,
            schedule=schedule,
            delay=prefetch_delay,
            enabled=prefetch_enabled,
        )
        self.categories: list[CategoryOut] = []
        self.cards: list[CardOut] = []
        self.transactions: list[TransactionOut] = []
        self.recurring_transactions: list[RecurringTransactionOut] = []
        self.budgets: list[BudgetOut] = []
        self.is_loading = False
        self._lock = threading.RLock()

    # -- reads -------------------------------------------------------------

    def _key(self, kind: CacheKind) -> str:
        return cache_key(kind, self.user_id)

    def _query(self, kind: CacheKind) -> list[BaseModel]:
        collection = COLLECTIONS[kind]
        with session_scope(self._session_factory) as session:
            rows = collection.service(session, self.user_id).list_all()
            return [collection.out.model_validate(row) for row in rows]

    def _fetch(self, kind: CacheKind) -> Optional[list[BaseModel]]:
        try:
            return self._query(kind)
        except SQLAlchemyError:
            logger.exception(f"load_failed: kind={kind.value} user_id={self.user_id}")
            return None

    def _store(self, kind: CacheKind, items: list[BaseModel]) -> None:
        with self._lock:
            setattr(self, COLLECTIONS[kind].attr, list(items))
            self.cache.set(self._key(kind), list(items), CACHE_TTLS[kind])

    def _load_collection(self, kind: CacheKind) -> None:
        cached = self.cache.get(self._key(kind))
        if cached is not None:
            setattr(self, COLLECTIONS[kind].attr, list(cached))
            if kind in REVALIDATED:
                self._run_in_background(partial(self._revalidate, kind, cached))
            return
        fresh = self._fetch(kind)
        if fresh is None:
            setattr(self, COLLECTIONS[kind].attr, [])
            return
        self._store(kind, fresh)

    def _revalidate(self, kind: CacheKind, cached: list[BaseModel]) -> None:
        fresh = self._fetch(kind)
        if fresh is None:
            return
        if _serialize(fresh) == _serialize(cached):
            return
        logger.info(
            f"revalidate_changed: kind={kind.value} user_id={self.user_id} "
            f"items={len(fresh)}"
        )
        with self._lock:
            self._store(kind, fresh)
            if kind == CacheKind.transactions:
                self.cache.clear(self._key(CacheKind.summary))

    def load(self) -> None:
        self.is_loading = True
        try:
            for kind in COLLECTIONS:
                self._load_collection(kind)
        finally:
            self.is_loading = False

    def refresh(self) -> None:
        """Re-read every collection from the store, ignoring cached copies."""
        self.is_loading = True
        try:
            for kind in COLLECTIONS:
                fresh = self._fetch(kind)
                if fresh is not None:
                    self._store(kind, fresh)
            self.cache.clear(self._key(CacheKind.summary))
        finally:
            self.is_loading = False

    def teardown(self) -> None:
        for collection in COLLECTIONS.values():
            setattr(self, collection.attr, [])
        for key in user_cache_keys(self.user_id):
            self.cache.clear(key)

    # -- prefetch ----------------------------------------------------------

    def _warm_route(self, route: str) -> None:
        for kind in ROUTE_DATA.get(route, []):
            self.advisor.prefetch_data(
                self._key(kind), partial(self._query, kind), CACHE_TTLS[kind]
            )

    def prefetch_related_data(self, route: str) -> list[str]:
        return self.advisor.navigate(route)

    # -- writes ------------------------------------------------------------

    def _write(self, kind: CacheKind, op: Callable[[Any], Any]) -> Optional[BaseModel]:
        collection = COLLECTIONS[kind]
        try:
            with session_scope(self._session_factory) as session:
                result = op(collection.service(session, self.user_id))
                if result is None:
                    return None
                return collection.out.model_validate(result)
        except Exception as exc:
            logger.warning(
                f"store_write_failed: kind={kind.value} user_id={self.user_id} "
                f"error={exc}"
            )
            raise

    def _invalidate(self, kind: CacheKind) -> None:
        for related in INVALIDATES[kind]:
            self.cache.clear(self._key(related))

    def _current(self, kind: CacheKind) -> list[BaseModel]:
        return getattr(self, COLLECTIONS[kind].attr)

    def _added(self, kind: CacheKind, item: BaseModel, *, prepend: bool = False) -> None:
        with self._lock:
            current = self._current(kind)
            self._store(kind, [item, *current] if prepend else [*current, item])
            self._invalidate(kind)

    def _replaced(self, kind: CacheKind, item: BaseModel) -> None:
        with self._lock:
            current = self._current(kind)
            self._store(kind, [item if row.id == item.id else row for row in current])
            self._invalidate(kind)

    def _removed(self, kind: CacheKind, item_id: int) -> None:
        with self._lock:
            current = self._current(kind)
            self._store(kind, [row for row in current if row.id != item_id])
            self._invalidate(kind)

    def add_category(self, data: CategoryIn) -> CategoryOut:
        category = self._write(CacheKind.categories, lambda svc: svc.create(data))
        self._added(CacheKind.categories, category)
        return category

    def update_category(self, category_id: int, data: CategoryPatch) -> CategoryOut:
        category = self._write(
            CacheKind.categories, lambda svc: svc.update(category_id, data)
        )
        self._replaced(CacheKind.categories, category)
        return category

    def delete_category(self, category_id: int) -> None:
        self._write(CacheKind.categories, lambda svc: svc.delete(category_id))
        self._removed(CacheKind.categories, category_id)

    def add_card(self, data: CardIn) -> CardOut:
        card = self._write(CacheKind.cards, lambda svc: svc.create(data))
        self._added(CacheKind.cards, card)
        return card

    def update_card(self, card_id: int, data: CardPatch) -> CardOut:
        card = self._write(CacheKind.cards, lambda svc: svc.update(card_id, data))
        self._replaced(CacheKind.cards, card)
        return card

    def delete_card(self, card_id: int) -> None:
        self._write(CacheKind.cards, lambda svc: svc.delete(card_id))
        self._removed(CacheKind.cards, card_id)

    def add_transaction(self, data: TransactionIn) -> TransactionOut:
        txn = self._write(CacheKind.transactions, lambda svc: svc.create(data))
        self._added(CacheKind.transactions, txn, prepend=True)
        return txn

    def update_transaction(
        self, transaction_id: int, data: TransactionPatch
    ) -> TransactionOut:
        txn = self._write(
            CacheKind.transactions, lambda svc: svc.update(transaction_id, data)
        )
        self._replaced(CacheKind.transactions, txn)
        return txn

    def delete_transaction(self, transaction_id: int) -> None:
        self._write(CacheKind.transactions, lambda svc: svc.delete(transaction_id))
        self._removed(CacheKind.transactions, transaction_id)

    def add_recurring_transaction(
        self, data: RecurringTransactionIn
    ) -> RecurringTransactionOut:
        recurring = self._write(CacheKind.recurring, lambda svc: svc.create(data))
        self._added(CacheKind.recurring, recurring)
        return recurring

    def update_recurring_transaction(
        self, recurring_id: int, data: RecurringTransactionPatch
    ) -> RecurringTransactionOut:
        recurring = self._write(
            CacheKind.recurring, lambda svc: svc.update(recurring_id, data)
        )
        self._replaced(CacheKind.recurring, recurring)
        return recurring

    def delete_recurring_transaction(self, recurring_id: int) -> None:
        self._write(CacheKind.recurring, lambda svc: svc.delete(recurring_id))
        self._removed(CacheKind.recurring, recurring_id)

    def toggle_recurring_transaction(self, recurring_id: int) -> RecurringTransactionOut:
        recurring = self._find_recurring(recurring_id)
        if recurring is None:
            raise ValueError("Recurring transaction not found")
        return self.update_recurring_transaction(
            recurring_id, RecurringTransactionPatch(is_active=not recurring.is_active)
        )

    def execute_recurring_transaction(
        self, recurring_id: int, today: Optional[date] = None
    ) -> Optional[TransactionOut]:
        recurring = self._find_recurring(recurring_id)
        if recurring is None:
            return None
        today = today or local_today()

        txn = self.add_transaction(
            TransactionIn(
                description=recurring.description,
                amount_cents=recurring.amount_cents,
                type=recurring.type,
                category_id=recurring.category_id,
                card_id=recurring.card_id,
                transaction_date=today,
                is_recurring=True,
                recurring_transaction_id=recurring.id,
            )
        )

        next_date = calculate_next_date(
            recurring.frequency, recurring.next_execution_date
        )
        patch = RecurringTransactionPatch(next_execution_date=next_date)
        if recurring.end_date and next_date > recurring.end_date:
            patch = RecurringTransactionPatch(
                next_execution_date=next_date, is_active=False
            )
        self.update_recurring_transaction(recurring_id, patch)
        return txn

    def add_budget(self, data: BudgetIn) -> BudgetOut:
        budget = self._write(CacheKind.budgets, lambda svc: svc.create(data))
        self._added(CacheKind.budgets, budget)
        return budget

    def update_budget(self, budget_id: int, data: BudgetPatch) -> BudgetOut:
        budget = self._write(CacheKind.budgets, lambda svc: svc.update(budget_id, data))
        self._replaced(CacheKind.budgets, budget)
        return budget

    def delete_budget(self, budget_id: int) -> None:
        self._write(CacheKind.budgets, lambda svc: svc.delete(budget_id))
        self._removed(CacheKind.budgets, budget_id)

    # -- derived -----------------------------------------------------------

    def _find_recurring(self, recurring_id: int) -> Optional[RecurringTransactionOut]:
        for recurring in self.recurring_transactions:
            if recurring.id == recurring_id:
                return recurring
        return None

    def active_recurring(self) -> list[RecurringTransactionOut]:
        return [r for r in self.recurring_transactions if r.is_active]

    def get_financial_summary(self) -> FinancialSummary:
        key = self._key(CacheKind.summary)
        with self._lock:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            summary = summarize(self.transactions)
            self.cache.set(key, summary, CACHE_TTLS[CacheKind.summary])
            return summary

    def budget_progress(
        self, year: int, month: Optional[int] = None
    ) -> list[BudgetProgress]:
        progress: list[BudgetProgress] = []
        for budget in self.budgets:
            if budget.year != year:
                continue
            if budget.period == BudgetPeriod.monthly:
                if month is not None and budget.month != month:
                    continue
                bucket_month = budget.month
            else:
                bucket_month = None
            spent = sum(
                t.amount_cents
                for t in self.transactions
                if t.type == TransactionType.expense
                and t.category_id == budget.category_id
                and _in_bucket(t.transaction_date, year, bucket_month)
            )
            if budget.limit_cents > 0:
                percent = spent / budget.limit_cents * 100
            else:
                percent = 100.0 if spent > 0 else 0.0
            if percent >= 100:
                status = "exceeded"
            elif percent >= BUDGET_WARNING_PERCENT:
                status = "warning"
            else:
                status = "ok"
            progress.append(
                BudgetProgress(
                    budget_id=budget.id,
                    category_id=budget.category_id,
                    category_name=budget.category.name if budget.category else None,
                    period=budget.period,
                    year=budget.year,
                    month=budget.month,
                    limit_cents=budget.limit_cents,
                    spent_cents=spent,
                    percent=round(percent, 2),
                    status=status,
                )
            )
        return progress

    def transaction_prerequisites(self) -> TransactionPrerequisites:
        active_cards = [card for card in self.cards if card.is_active]
        has_categories = bool(self.categories)
        has_cards = bool(active_cards)
        missing: list[str] = []
        if not has_categories:
            missing.append("categories")
        if not has_cards:
            missing.append("cards")
        return TransactionPrerequisites(
            can_create=has_categories and has_cards,
            has_categories=has_categories,
            has_cards=has_cards,
            categories_count=len(self.categories),
            cards_count=len(active_cards),
            missing_items=missing,
        )
