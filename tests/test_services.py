from datetime import date

import pytest
from pydantic import ValidationError

from database import session_scope
from models import BudgetPeriod, CardType, TransactionType
from schemas import (
    BudgetIn,
    BudgetPatch,
    CardIn,
    CardPatch,
    CategoryIn,
    RecurringTransactionIn,
    RecurringTransactionPatch,
    SessionIn,
    TransactionIn,
    TransactionPatch,
)
from services import (
    BudgetService,
    CardService,
    CategoryService,
    ProfileService,
    RecurringTransactionService,
    StoreWriteError,
    TransactionService,
)


def test_profile_lookup_is_case_insensitive(session_factory) -> None:
    with session_scope(session_factory) as session:
        first = ProfileService(session).get_or_create(SessionIn(email="Bia@Example.com"))
        again = ProfileService(session).get_or_create(SessionIn(email="bia@example.com"))
        assert first.id == again.id
        assert first.name == "bia"


def test_rows_are_scoped_to_their_owner(session_factory, profile) -> None:
    with session_scope(session_factory) as session:
        other = ProfileService(session).get_or_create(SessionIn(email="outro@example.com"))
        category = CategoryService(session, profile.id).create(
            CategoryIn(name="Mercado", type=TransactionType.expense)
        )
        assert CategoryService(session, other.id).list_all() == []
        with pytest.raises(ValueError, match="Category not found"):
            CategoryService(session, other.id).get(category.id)


def test_card_with_transactions_cannot_be_deleted(session_factory, profile) -> None:
    with session_scope(session_factory) as session:
        category = CategoryService(session, profile.id).create(
            CategoryIn(name="Mercado", type=TransactionType.expense)
        )
        card = CardService(session, profile.id).create(
            CardIn(name="Nubank", type=CardType.credit, bank="Nubank")
        )
        TransactionService(session, profile.id).create(
            TransactionIn(
                description="Feira",
                amount_cents=3500,
                type=TransactionType.expense,
                category_id=category.id,
                card_id=card.id,
                transaction_date=date(2024, 2, 3),
            )
        )
        with pytest.raises(StoreWriteError, match="linked transactions"):
            CardService(session, profile.id).delete(card.id)
        assert CardService(session, profile.id).get(card.id).name == "Nubank"


def test_category_with_budget_cannot_be_deleted(session_factory, profile) -> None:
    with session_scope(session_factory) as session:
        category = CategoryService(session, profile.id).create(
            CategoryIn(name="Mercado", type=TransactionType.expense)
        )
        BudgetService(session, profile.id).create(
            BudgetIn(
                category_id=category.id,
                limit_cents=50000,
                period=BudgetPeriod.yearly,
                year=2024,
                month=7,
            )
        )
        with pytest.raises(StoreWriteError):
            CategoryService(session, profile.id).delete(category.id)


def test_yearly_budget_drops_month(session_factory, profile) -> None:
    with session_scope(session_factory) as session:
        category = CategoryService(session, profile.id).create(
            CategoryIn(name="Mercado", type=TransactionType.expense)
        )
        service = BudgetService(session, profile.id)
        budget = service.create(
            BudgetIn(
                category_id=category.id,
                limit_cents=1000,
                period=BudgetPeriod.monthly,
                year=2024,
                month=7,
            )
        )
        updated = service.update(budget.id, BudgetPatch(period=BudgetPeriod.yearly))
        assert updated.month is None


def test_monthly_budget_requires_month() -> None:
    with pytest.raises(ValidationError):
        BudgetIn(category_id=1, limit_cents=10, period=BudgetPeriod.monthly, year=2024)


def test_recurring_end_before_start_is_rejected() -> None:
    with pytest.raises(ValidationError):
        RecurringTransactionIn(
            description="Academia",
            amount_cents=9900,
            type=TransactionType.expense,
            category_id=1,
            card_id=1,
            frequency="monthly",
            start_date=date(2024, 5, 1),
            end_date=date(2024, 4, 1),
        )


def test_patches_reject_null_for_required_columns() -> None:
    with pytest.raises(ValidationError, match="start_date cannot be null"):
        RecurringTransactionPatch(start_date=None)
    with pytest.raises(ValidationError, match="amount_cents cannot be null"):
        TransactionPatch(amount_cents=None)
    with pytest.raises(ValidationError, match="is_active cannot be null"):
        CardPatch(is_active=None)

    assert RecurringTransactionPatch(end_date=None).model_dump(exclude_unset=True) == {
        "end_date": None
    }
    assert TransactionPatch(notes=None).model_fields_set == {"notes"}
    assert CardPatch(limit_cents=None, last_digits=None).limit_cents is None
    assert RecurringTransactionPatch().model_fields_set == set()


def test_recurring_end_date_can_be_cleared(session_factory, profile) -> None:
    with session_scope(session_factory) as session:
        category = CategoryService(session, profile.id).create(
            CategoryIn(name="Academia", type=TransactionType.expense)
        )
        card = CardService(session, profile.id).create(
            CardIn(name="Conta", type=CardType.debit, bank="Itaú")
        )
        service = RecurringTransactionService(session, profile.id)
        recurring = service.create(
            RecurringTransactionIn(
                description="Academia",
                amount_cents=9900,
                type=TransactionType.expense,
                category_id=category.id,
                card_id=card.id,
                frequency="monthly",
                start_date=date(2024, 5, 1),
                end_date=date(2024, 12, 1),
            )
        )
        updated = service.update(recurring.id, RecurringTransactionPatch(end_date=None))
        assert updated.end_date is None
        assert updated.start_date == date(2024, 5, 1)
