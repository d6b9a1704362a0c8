"""Billing-provider webhook events mirrored into ``SubscriptionRecord`` rows."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Profile, SubscriptionRecord


logger = logging.getLogger(__name__)


def _from_epoch(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _price_id(subscription: dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


class BillingWebhookService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def handle(self, event: dict[str, Any]) -> bool:
        """Apply one event. Returns False for event types that are ignored."""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        handler = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_created,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }.get(event_type)
        if handler is None:
            logger.info(f"billing_event_ignored: type={event_type}")
            return False
        logger.info(f"billing_event: type={event_type} id={obj.get('id')}")
        handler(obj)
        self.session.commit()
        return True

    def _find(self, subscription_id: Optional[str]) -> Optional[SubscriptionRecord]:
        if not subscription_id:
            return None
        return self.session.scalar(
            select(SubscriptionRecord).where(
                SubscriptionRecord.billing_subscription_id == subscription_id
            )
        )

    def _checkout_completed(self, checkout: dict[str, Any]) -> None:
        if checkout.get("mode") != "subscription":
            return
        subscription = checkout.get("subscription")
        if isinstance(subscription, dict):
            self._subscription_created(subscription)
        else:
            logger.warning(
                f"billing_checkout_unexpanded: checkout={checkout.get('id')} "
                f"subscription={subscription}"
            )

    def _subscription_created(self, subscription: dict[str, Any]) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            logger.error("billing_missing_subscription_id")
            return
        raw_user = (subscription.get("metadata") or {}).get("userId")
        if raw_user is None:
            logger.error(f"billing_missing_user: subscription={subscription_id}")
            return
        try:
            user_id = int(raw_user)
        except (TypeError, ValueError):
            logger.error(
                f"billing_bad_user: subscription={subscription_id} user_id={raw_user!r}"
            )
            return
        if self.session.get(Profile, user_id) is None:
            logger.error(f"billing_unknown_user: user_id={user_id}")
            return

        record = self._find(subscription_id)
        if record is None:
            record = SubscriptionRecord(
                user_id=user_id, billing_subscription_id=subscription_id
            )
            self.session.add(record)
        record.user_id = user_id
        record.plan_id = "pro"
        record.status = subscription.get("status", "incomplete")
        record.billing_customer_id = subscription.get("customer")
        record.billing_price_id = _price_id(subscription)
        record.current_period_start = _from_epoch(
            subscription.get("current_period_start")
        )
        record.current_period_end = _from_epoch(subscription.get("current_period_end"))
        record.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        record.trial_start = _from_epoch(subscription.get("trial_start"))
        record.trial_end = _from_epoch(subscription.get("trial_end"))

    def _subscription_updated(self, subscription: dict[str, Any]) -> None:
        record = self._find(subscription.get("id"))
        if record is None:
            if (subscription.get("metadata") or {}).get("userId") is not None:
                self._subscription_created(subscription)
            else:
                logger.error(
                    f"billing_subscription_unknown: subscription={subscription.get('id')}"
                )
            return
        record.plan_id = "pro"
        record.status = subscription.get("status", record.status)
        record.current_period_start = _from_epoch(
            subscription.get("current_period_start")
        )
        record.current_period_end = _from_epoch(subscription.get("current_period_end"))
        record.cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
        record.canceled_at = _from_epoch(subscription.get("canceled_at"))

    def _subscription_deleted(self, subscription: dict[str, Any]) -> None:
        record = self._find(subscription.get("id"))
        if record is None:
            return
        record.status = "canceled"
        record.canceled_at = datetime.utcnow()

    def _payment_succeeded(self, invoice: dict[str, Any]) -> None:
        record = self._find(invoice.get("subscription"))
        if record is None:
            return
        record.status = "active"
        lines = (invoice.get("lines") or {}).get("data") or []
        if lines:
            period = lines[0].get("period") or {}
            record.current_period_start = _from_epoch(period.get("start"))
            record.current_period_end = _from_epoch(period.get("end"))

    def _payment_failed(self, invoice: dict[str, Any]) -> None:
        record = self._find(invoice.get("subscription"))
        if record is None:
            logger.warning(f"billing_payment_failed_unknown: invoice={invoice.get('id')}")
            return
        record.status = "past_due"
