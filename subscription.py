"""Access tier derived from account age.

Nothing here is stored: every call recomputes from the account creation
timestamp and the clock.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional


TRIAL_DAYS = 30


class EffectiveStatus(str, Enum):
    active_trial = "active_trial"
    active_paid = "active_paid"
    expired = "expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionEvaluator:
    def __init__(
        self,
        account_created_at: datetime,
        *,
        has_paid_subscription: bool = False,
        trial_days: int = TRIAL_DAYS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.account_created_at = _as_utc(account_created_at)
        self.has_paid_subscription = has_paid_subscription
        self.trial_days = trial_days
        self._now = now

    @property
    def days_since_creation(self) -> int:
        elapsed = _as_utc(self._now()) - self.account_created_at
        return elapsed // timedelta(days=1)

    @property
    def trial_days_remaining(self) -> int:
        return max(0, self.trial_days - self.days_since_creation)

    @property
    def trial_end(self) -> datetime:
        return self.account_created_at + timedelta(days=self.trial_days)

    @property
    def status(self) -> EffectiveStatus:
        if self.has_paid_subscription:
            return EffectiveStatus.active_paid
        if self.trial_days_remaining > 0:
            return EffectiveStatus.active_trial
        return EffectiveStatus.expired

    def can_perform_action(self, kind: Optional[str] = None) -> bool:
        return self.status in (EffectiveStatus.active_trial, EffectiveStatus.active_paid)

    def is_in_trial(self) -> bool:
        return self.status == EffectiveStatus.active_trial

    def is_trial_expired(self) -> bool:
        return self.status == EffectiveStatus.expired

    def is_pro(self) -> bool:
        return self.status == EffectiveStatus.active_paid

    def get_trial_days_remaining(self) -> int:
        return self.trial_days_remaining

    def get_status_text(self) -> str:
        status = self.status
        if status == EffectiveStatus.active_trial:
            return (
                f"Acesso completo ativo - {self.trial_days_remaining} dias restantes"
            )
        if status == EffectiveStatus.active_paid:
            return "Plano PRO ativo"
        return "Trial expirado - Faça upgrade para continuar"

    def get_limits(self) -> dict[str, int]:
        # -1 means unlimited
        remaining = -1 if self.can_perform_action() else 0
        return {"transactions": remaining, "categories": remaining, "cards": remaining}

    def as_dict(self) -> dict[str, object]:
        status = self.status
        return {
            "plan_id": "pro" if status == EffectiveStatus.active_paid else "free",
            "effective_status": status.value,
            "trial_start": self.account_created_at.isoformat(),
            "trial_end": self.trial_end.isoformat(),
            "trial_days_remaining": self.trial_days_remaining,
            "status_text": self.get_status_text(),
            "limits": self.get_limits(),
        }
