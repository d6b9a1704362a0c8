from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from models import (
    Budget,
    BudgetPeriod,
    Card,
    Category,
    Profile,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from schemas import (
    BudgetIn,
    BudgetPatch,
    CardIn,
    CardPatch,
    CategoryIn,
    CategoryPatch,
    RecurringTransactionIn,
    RecurringTransactionPatch,
    SessionIn,
    TransactionIn,
    TransactionPatch,
)


class StoreWriteError(ValueError):
    """A write the database refused, usually a foreign-key or check constraint."""


def _commit(session: Session, message: str, *statements) -> None:
    try:
        for stmt in statements:
            session.execute(stmt)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise StoreWriteError(message) from exc


def _owned_category(session: Session, user_id: int, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category or category.user_id != user_id:
        raise ValueError("Category not found")
    return category


def _owned_card(session: Session, user_id: int, card_id: int) -> Card:
    card = session.get(Card, card_id)
    if not card or card.user_id != user_id:
        raise ValueError("Card not found")
    return card


class ProfileService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Profile:
        profile = self.session.get(Profile, user_id)
        if not profile:
            raise ValueError("Profile not found")
        return profile

    def get_or_create(self, data: SessionIn) -> Profile:
        email = data.email.strip().lower()
        existing = self.session.scalar(
            select(Profile).where(func.lower(Profile.email) == email)
        )
        if existing:
            return existing
        profile = Profile(
            email=email,
            name=(data.name or email.split("@", 1)[0]).strip(),
            username=data.username,
        )
        self.session.add(profile)
        _commit(self.session, "Username already in use")
        self.session.refresh(profile)
        return profile


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name, Category.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        return _owned_category(self.session, self.user_id, category_id)

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
        )
        self.session.add(category)
        _commit(self.session, "Could not create category")
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryPatch) -> Category:
        category = self.get(category_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "name" and value is not None:
                value = value.strip()
            setattr(category, field, value)
        _commit(self.session, "Could not update category")
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        self.get(category_id)
        _commit(
            self.session,
            "Cannot delete category with linked transactions or budgets",
            delete(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            ),
        )


class CardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Card]:
        stmt = (
            select(Card).where(Card.user_id == self.user_id).order_by(Card.name, Card.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, card_id: int) -> Card:
        return _owned_card(self.session, self.user_id, card_id)

    def create(self, data: CardIn) -> Card:
        card = Card(user_id=self.user_id, **data.model_dump())
        card.name = card.name.strip()
        self.session.add(card)
        _commit(self.session, "Could not create card")
        self.session.refresh(card)
        return card

    def update(self, card_id: int, data: CardPatch) -> Card:
        card = self.get(card_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(card, field, value)
        _commit(self.session, "Could not update card")
        self.session.refresh(card)
        return card

    def delete(self, card_id: int) -> None:
        self.get(card_id)
        _commit(
            self.session,
            "Cannot delete card with linked transactions",
            delete(Card).where(Card.id == card_id, Card.user_id == self.user_id),
        )


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.card))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.card))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def _validate_refs(
        self,
        txn_type: TransactionType,
        category_id: int,
        card_id: int,
        recurring_transaction_id: Optional[int] = None,
    ) -> None:
        category = _owned_category(self.session, self.user_id, category_id)
        if category.type != txn_type:
            raise ValueError("Category type mismatch")
        _owned_card(self.session, self.user_id, card_id)
        if recurring_transaction_id is not None:
            recurring = self.session.get(RecurringTransaction, recurring_transaction_id)
            if not recurring or recurring.user_id != self.user_id:
                raise ValueError("Recurring transaction not found")

    def create(self, data: TransactionIn) -> Transaction:
        self._validate_refs(
            data.type, data.category_id, data.card_id, data.recurring_transaction_id
        )
        txn = Transaction(
            user_id=self.user_id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            type=data.type,
            category_id=data.category_id,
            card_id=data.card_id,
            transaction_date=data.transaction_date,
            notes=data.notes,
            is_recurring=data.is_recurring,
            recurring_transaction_id=data.recurring_transaction_id,
        )
        self.session.add(txn)
        _commit(self.session, "Could not create transaction")
        return self.get(txn.id)

    def update(self, transaction_id: int, data: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(txn, field, value)
        if {"type", "category_id", "card_id"} & changes.keys():
            self._validate_refs(txn.type, txn.category_id, txn.card_id)
        _commit(self.session, "Could not update transaction")
        self.session.expire(txn)
        return self.get(transaction_id)

    def delete(self, transaction_id: int) -> None:
        self.get(transaction_id)
        _commit(
            self.session,
            "Could not delete transaction",
            delete(Transaction).where(
                Transaction.id == transaction_id, Transaction.user_id == self.user_id
            ),
        )


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(
                joinedload(RecurringTransaction.category),
                joinedload(RecurringTransaction.card),
            )
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(
                RecurringTransaction.next_execution_date, RecurringTransaction.id
            )
        )
        return self.session.scalars(stmt).all()

    def get(self, recurring_id: int) -> RecurringTransaction:
        stmt = (
            select(RecurringTransaction)
            .options(
                joinedload(RecurringTransaction.category),
                joinedload(RecurringTransaction.card),
            )
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.id == recurring_id,
            )
        )
        recurring = self.session.scalar(stmt)
        if not recurring:
            raise ValueError("Recurring transaction not found")
        return recurring

    def _validate_refs(
        self, txn_type: TransactionType, category_id: int, card_id: int
    ) -> None:
        category = _owned_category(self.session, self.user_id, category_id)
        if category.type != txn_type:
            raise ValueError("Category type mismatch")
        _owned_card(self.session, self.user_id, card_id)

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        self._validate_refs(data.type, data.category_id, data.card_id)
        recurring = RecurringTransaction(
            user_id=self.user_id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            type=data.type,
            category_id=data.category_id,
            card_id=data.card_id,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            next_execution_date=data.next_execution_date or data.start_date,
            is_active=data.is_active,
        )
        self.session.add(recurring)
        _commit(self.session, "Could not create recurring transaction")
        return self.get(recurring.id)

    def update(
        self, recurring_id: int, data: RecurringTransactionPatch
    ) -> RecurringTransaction:
        recurring = self.get(recurring_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(recurring, field, value)
        if {"type", "category_id", "card_id"} & changes.keys():
            self._validate_refs(recurring.type, recurring.category_id, recurring.card_id)
        if recurring.end_date and recurring.end_date < recurring.start_date:
            raise ValueError("End date must be after start date")
        _commit(self.session, "Could not update recurring transaction")
        self.session.expire(recurring)
        return self.get(recurring_id)

    def delete(self, recurring_id: int) -> None:
        self.get(recurring_id)
        _commit(
            self.session,
            "Could not delete recurring transaction",
            delete(RecurringTransaction).where(
                RecurringTransaction.id == recurring_id,
                RecurringTransaction.user_id == self.user_id,
            ),
        )


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.month.desc(), Budget.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise ValueError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        _owned_category(self.session, self.user_id, data.category_id)
        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            limit_cents=data.limit_cents,
            period=data.period,
            year=data.year,
            month=data.month,
        )
        self.session.add(budget)
        _commit(self.session, "Could not create budget")
        return self.get(budget.id)

    def update(self, budget_id: int, data: BudgetPatch) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        if "category_id" in changes:
            _owned_category(self.session, self.user_id, changes["category_id"])
        for field, value in changes.items():
            setattr(budget, field, value)
        if budget.period == BudgetPeriod.yearly:
            budget.month = None
        elif budget.month is None:
            raise ValueError("Monthly budgets require a month")
        _commit(self.session, "Could not update budget")
        self.session.expire(budget)
        return self.get(budget_id)

    def delete(self, budget_id: int) -> None:
        self.get(budget_id)
        _commit(
            self.session,
            "Could not delete budget",
            delete(Budget).where(Budget.id == budget_id, Budget.user_id == self.user_id),
        )
