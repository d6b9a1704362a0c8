import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from cache import TTLCache
from config import Settings, get_settings
from coordinator import FinancialCoordinator
from database import SessionLocal
from scheduler import SchedulerManager


logger = logging.getLogger(__name__)


class AppState:
    """Process-wide state: one cache, one scheduler, one coordinator per user."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: sessionmaker = SessionLocal,
        scheduler: Optional[SchedulerManager] = None,
        run_in_background: Optional[Callable[[Callable[[], None]], None]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.cache = TTLCache(
            capacity=self.settings.cache_capacity,
            default_ttl=self.settings.cache_default_ttl_secs,
        )
        self.scheduler = scheduler or SchedulerManager()
        self._run_in_background = run_in_background or self.scheduler.run_soon
        self._coordinators: dict[int, FinancialCoordinator] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        self.scheduler.add_cache_sweep(
            self.cache.sweep, self.settings.cache_sweep_interval_secs
        )
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def _schedule_for(self, user_id: int):
        def schedule(func: Callable[[], None], delay: float, job_id: str) -> None:
            self.scheduler.run_later(func, delay, f"{job_id}_{user_id}")

        return schedule

    def start_session(self, user_id: int) -> FinancialCoordinator:
        coordinator = FinancialCoordinator(
            user_id,
            self.cache,
            session_factory=self.session_factory,
            run_in_background=self._run_in_background,
            schedule=self._schedule_for(user_id),
            prefetch_enabled=self.settings.prefetch_enabled,
            prefetch_delay=self.settings.prefetch_delay_secs,
        )
        coordinator.load()
        with self._lock:
            previous = self._coordinators.get(user_id)
            self._coordinators[user_id] = coordinator
        if previous is not None:
            logger.info(f"session_replaced: user_id={user_id}")
        coordinator.advisor.prefetch_likely_routes()
        logger.info(f"session_started: user_id={user_id}")
        return coordinator

    def end_session(self, user_id: int) -> None:
        with self._lock:
            coordinator = self._coordinators.pop(user_id, None)
        if coordinator is None:
            return
        coordinator.teardown()
        logger.info(f"session_ended: user_id={user_id}")

    def coordinator_for(self, user_id: int) -> FinancialCoordinator:
        with self._lock:
            coordinator = self._coordinators.get(user_id)
        if coordinator is None:
            coordinator = self.start_session(user_id)
        return coordinator

    def active_users(self) -> list[int]:
        with self._lock:
            return list(self._coordinators)

