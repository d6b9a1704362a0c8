import hmac
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from auth import bearer_token, issue_session_token, read_session_token
from billing import BillingWebhookService
from coordinator import FinancialCoordinator
from models import Profile
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
    NavigateIn,
    RecurringTransactionIn,
    RecurringTransactionOut,
    RecurringTransactionPatch,
    SessionIn,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    TransactionPrerequisites,
)
from services import ProfileService, StoreWriteError
from sessions import AppState
from subscription import SubscriptionEvaluator


logger = logging.getLogger(__name__)

app = FastAPI(title="FinancePRO")
app_state = AppState()


def get_state() -> AppState:
    return app_state


def get_db(state: AppState = Depends(get_state)):
    db = state.session_factory()
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    app_state.start()


@app.on_event("shutdown")
def shutdown_event():
    app_state.stop()


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, StoreWriteError):
        return HTTPException(status_code=409, detail=str(exc))
    if str(exc).endswith("not found"):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def evaluator_for(profile: Profile, state: AppState) -> SubscriptionEvaluator:
    # Paid plans are not looked up yet; every account is on the trial clock.
    return SubscriptionEvaluator(
        profile.created_at,
        has_paid_subscription=False,
        trial_days=state.settings.trial_days,
    )


def current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> Profile:
    token = bearer_token(authorization)
    user_id = read_session_token(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return ProfileService(db).get(user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_coordinator(
    user: Profile = Depends(current_user), state: AppState = Depends(get_state)
) -> FinancialCoordinator:
    return state.coordinator_for(user.id)


def require_active(
    user: Profile = Depends(current_user), state: AppState = Depends(get_state)
) -> Profile:
    evaluator = evaluator_for(user, state)
    if not evaluator.can_perform_action():
        raise HTTPException(status_code=403, detail=evaluator.get_status_text())
    return user


def _profile_dict(profile: Profile) -> dict[str, object]:
    return {
        "id": profile.id,
        "email": profile.email,
        "name": profile.name,
        "username": profile.username,
    }


@app.post("/api/session")
def login(
    payload: SessionIn,
    db: Session = Depends(get_db),
    state: AppState = Depends(get_state),
):
    try:
        profile = ProfileService(db).get_or_create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    state.start_session(profile.id)
    return {
        "token": issue_session_token(profile.id),
        "user": _profile_dict(profile),
        "subscription": evaluator_for(profile, state).as_dict(),
    }


@app.delete("/api/session", status_code=204)
def logout(user: Profile = Depends(current_user), state: AppState = Depends(get_state)):
    state.end_session(user.id)
    return Response(status_code=204)


@app.get("/api/me")
def me(user: Profile = Depends(current_user)):
    return _profile_dict(user)


@app.get("/api/subscription")
def subscription_status(
    user: Profile = Depends(current_user), state: AppState = Depends(get_state)
):
    return evaluator_for(user, state).as_dict()


# -- categories ---------------------------------------------------------------


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.categories


@app.post(
    "/api/categories",
    response_model=CategoryOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def create_category(
    payload: CategoryIn, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        return coord.add_category(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.patch(
    "/api/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(require_active)],
)
def update_category(
    category_id: int,
    payload: CategoryPatch,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    try:
        return coord.update_category(category_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete(
    "/api/categories/{category_id}",
    status_code=204,
    dependencies=[Depends(require_active)],
)
def delete_category(
    category_id: int, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        coord.delete_category(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# -- cards --------------------------------------------------------------------


@app.get("/api/cards", response_model=list[CardOut])
def list_cards(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.cards


@app.post(
    "/api/cards",
    response_model=CardOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def create_card(payload: CardIn, coord: FinancialCoordinator = Depends(get_coordinator)):
    try:
        return coord.add_card(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.patch(
    "/api/cards/{card_id}",
    response_model=CardOut,
    dependencies=[Depends(require_active)],
)
def update_card(
    card_id: int, payload: CardPatch, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        return coord.update_card(card_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete(
    "/api/cards/{card_id}", status_code=204, dependencies=[Depends(require_active)]
)
def delete_card(card_id: int, coord: FinancialCoordinator = Depends(get_coordinator)):
    try:
        coord.delete_card(card_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# -- transactions -------------------------------------------------------------


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.transactions


@app.get("/api/transactions/prerequisites", response_model=TransactionPrerequisites)
def transaction_prerequisites(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.transaction_prerequisites()


@app.post(
    "/api/transactions",
    response_model=TransactionOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def create_transaction(
    payload: TransactionIn, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        return coord.add_transaction(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.patch(
    "/api/transactions/{transaction_id}",
    response_model=TransactionOut,
    dependencies=[Depends(require_active)],
)
def update_transaction(
    transaction_id: int,
    payload: TransactionPatch,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    try:
        return coord.update_transaction(transaction_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete(
    "/api/transactions/{transaction_id}",
    status_code=204,
    dependencies=[Depends(require_active)],
)
def delete_transaction(
    transaction_id: int, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        coord.delete_transaction(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# -- recurring transactions ---------------------------------------------------


@app.get("/api/recurring-transactions", response_model=list[RecurringTransactionOut])
def list_recurring(
    active: bool = False, coord: FinancialCoordinator = Depends(get_coordinator)
):
    if active:
        return coord.active_recurring()
    return coord.recurring_transactions


@app.post(
    "/api/recurring-transactions",
    response_model=RecurringTransactionOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def create_recurring(
    payload: RecurringTransactionIn,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    try:
        return coord.add_recurring_transaction(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.patch(
    "/api/recurring-transactions/{recurring_id}",
    response_model=RecurringTransactionOut,
    dependencies=[Depends(require_active)],
)
def update_recurring(
    recurring_id: int,
    payload: RecurringTransactionPatch,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    try:
        return coord.update_recurring_transaction(recurring_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete(
    "/api/recurring-transactions/{recurring_id}",
    status_code=204,
    dependencies=[Depends(require_active)],
)
def delete_recurring(
    recurring_id: int, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        coord.delete_recurring_transaction(recurring_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/api/recurring-transactions/{recurring_id}/toggle",
    response_model=RecurringTransactionOut,
    dependencies=[Depends(require_active)],
)
def toggle_recurring(
    recurring_id: int, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        return coord.toggle_recurring_transaction(recurring_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post(
    "/api/recurring-transactions/{recurring_id}/execute",
    response_model=TransactionOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def execute_recurring(
    recurring_id: int, coord: FinancialCoordinator = Depends(get_coordinator)
):
    try:
        txn = coord.execute_recurring_transaction(recurring_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    if txn is None:
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return txn


# -- budgets ------------------------------------------------------------------


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.budgets


@app.get("/api/budgets/progress", response_model=list[BudgetProgress])
def budget_progress(
    year: int,
    month: Optional[int] = None,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    if month is not None and not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Invalid month")
    return coord.budget_progress(year, month)


@app.post(
    "/api/budgets",
    response_model=BudgetOut,
    status_code=201,
    dependencies=[Depends(require_active)],
)
def create_budget(payload: BudgetIn, coord: FinancialCoordinator = Depends(get_coordinator)):
    try:
        return coord.add_budget(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.patch(
    "/api/budgets/{budget_id}",
    response_model=BudgetOut,
    dependencies=[Depends(require_active)],
)
def update_budget(
    budget_id: int,
    payload: BudgetPatch,
    coord: FinancialCoordinator = Depends(get_coordinator),
):
    try:
        return coord.update_budget(budget_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete(
    "/api/budgets/{budget_id}", status_code=204, dependencies=[Depends(require_active)]
)
def delete_budget(budget_id: int, coord: FinancialCoordinator = Depends(get_coordinator)):
    try:
        coord.delete_budget(budget_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# -- derived views ------------------------------------------------------------


@app.get("/api/summary", response_model=FinancialSummary)
def financial_summary(coord: FinancialCoordinator = Depends(get_coordinator)):
    return coord.get_financial_summary()


@app.post("/api/navigate")
def navigate(payload: NavigateIn, coord: FinancialCoordinator = Depends(get_coordinator)):
    return {"route": payload.route, "prefetching": coord.prefetch_related_data(payload.route)}


@app.get("/api/cache/stats")
def cache_stats(
    _user: Profile = Depends(current_user), state: AppState = Depends(get_state)
):
    return state.cache.stats().as_dict()


# -- billing ------------------------------------------------------------------


@app.post("/api/billing/webhook")
async def billing_webhook(
    request: Request,
    x_billing_secret: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    state: AppState = Depends(get_state),
):
    expected = state.settings.billing_webhook_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Billing not configured")
    if not x_billing_secret or not hmac.compare_digest(x_billing_secret, expected):
        logger.warning("billing_webhook_rejected: reason=bad_secret")
        raise HTTPException(status_code=400, detail="Invalid webhook secret")
    try:
        event = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid payload") from exc
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    BillingWebhookService(db).handle(event)
    return {"received": True}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
