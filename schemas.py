from datetime import date, datetime
from typing import ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import BudgetPeriod, CardType, Frequency, TransactionType


class SessionIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    name: Optional[str] = Field(default=None, max_length=120)
    username: Optional[str] = Field(default=None, max_length=50)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: str = Field(default="tag", max_length=40)
    color: str = Field(default="#6b7280", max_length=9)


class _Patch(BaseModel):
    """Partial update. Only fields listed in ``nullable`` may be set to null."""

    nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_nulls(self) -> "_Patch":
        for field in self.model_fields_set - self.nullable:
            if getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class CategoryPatch(_Patch):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)


class CardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CardType
    bank: str = Field(..., min_length=1, max_length=100)
    limit_cents: Optional[int] = Field(default=None, ge=0)
    color: str = Field(default="#1f2937", max_length=9)
    last_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    is_active: bool = True


class CardPatch(_Patch):
    nullable: ClassVar[frozenset[str]] = frozenset({"limit_cents", "last_digits"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[CardType] = None
    bank: Optional[str] = Field(default=None, min_length=1, max_length=100)
    limit_cents: Optional[int] = Field(default=None, ge=0)
    color: Optional[str] = Field(default=None, max_length=9)
    last_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    is_active: Optional[bool] = None


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    card_id: int
    transaction_date: date
    notes: Optional[str] = Field(default=None, max_length=500)
    is_recurring: bool = False
    recurring_transaction_id: Optional[int] = None


class TransactionPatch(_Patch):
    nullable: ClassVar[frozenset[str]] = frozenset({"notes"})

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    card_id: Optional[int] = None
    transaction_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class RecurringTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    card_id: int
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    next_execution_date: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def _check_dates(self) -> "RecurringTransactionIn":
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be after start date")
        if self.next_execution_date is None:
            self.next_execution_date = self.start_date
        return self


class RecurringTransactionPatch(_Patch):
    nullable: ClassVar[frozenset[str]] = frozenset({"end_date"})

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    card_id: Optional[int] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    next_execution_date: Optional[date] = None
    is_active: Optional[bool] = None


class BudgetIn(BaseModel):
    category_id: int
    limit_cents: int = Field(..., ge=0)
    period: BudgetPeriod
    year: int = Field(..., ge=1970, le=3000)
    month: Optional[int] = Field(default=None, ge=1, le=12)

    @model_validator(mode="after")
    def _check_month(self) -> "BudgetIn":
        if self.period == BudgetPeriod.monthly and self.month is None:
            raise ValueError("Monthly budgets require a month")
        if self.period == BudgetPeriod.yearly:
            self.month = None
        return self


class BudgetPatch(_Patch):
    nullable: ClassVar[frozenset[str]] = frozenset({"month"})

    category_id: Optional[int] = None
    limit_cents: Optional[int] = Field(default=None, ge=0)
    period: Optional[BudgetPeriod] = None
    year: Optional[int] = Field(default=None, ge=1970, le=3000)
    month: Optional[int] = Field(default=None, ge=1, le=12)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    type: TransactionType
    icon: str
    color: str
    created_at: datetime
    updated_at: datetime


class CardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    type: CardType
    bank: str
    limit_cents: Optional[int]
    color: str
    last_digits: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    description: str
    amount_cents: int
    type: TransactionType
    category_id: int
    card_id: int
    transaction_date: date
    notes: Optional[str]
    is_recurring: bool
    recurring_transaction_id: Optional[int]
    created_at: datetime
    updated_at: datetime
    category: Optional[CategoryOut] = None
    card: Optional[CardOut] = None


class RecurringTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    description: str
    amount_cents: int
    type: TransactionType
    category_id: int
    card_id: int
    frequency: Frequency
    start_date: date
    end_date: Optional[date]
    next_execution_date: date
    is_active: bool
    created_at: datetime
    updated_at: datetime
    category: Optional[CategoryOut] = None
    card: Optional[CardOut] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    category_id: int
    limit_cents: int
    period: BudgetPeriod
    year: int
    month: Optional[int]
    created_at: datetime
    updated_at: datetime
    category: Optional[CategoryOut] = None


class FinancialSummary(BaseModel):
    receitas: int = 0
    despesas: int = 0
    saldo: int = 0
    categorias: int = 0
    top_categorias: list[str] = Field(default_factory=list)


class BudgetProgress(BaseModel):
    budget_id: int
    category_id: int
    category_name: Optional[str]
    period: BudgetPeriod
    year: int
    month: Optional[int]
    limit_cents: int
    spent_cents: int
    percent: float
    status: Literal["ok", "warning", "exceeded"]


class TransactionPrerequisites(BaseModel):
    can_create: bool
    has_categories: bool
    has_cards: bool
    categories_count: int
    cards_count: int
    missing_items: list[str] = Field(default_factory=list)


class NavigateIn(BaseModel):
    route: str = Field(..., min_length=1, max_length=200)
