import logging
import threading
from typing import Any, Callable, Optional

from cache import CacheKind, TTLCache


logger = logging.getLogger(__name__)

PREFETCH_DELAY = 0.1
FLUSH_JOB_ID = "prefetch_flush"

LIKELY_ROUTES = ["/dashboard", "/transacoes", "/cartoes", "/categorias", "/orcamento"]

RELATED_ROUTES: dict[str, list[str]] = {
    "/": ["/dashboard", "/transacoes"],
    "/dashboard": ["/transacoes", "/cartoes", "/orcamento"],
    "/transacoes": ["/categorias", "/cartoes", "/dashboard"],
    "/transacoes-fixas": ["/transacoes", "/categorias", "/cartoes"],
    "/cartoes": ["/transacoes", "/dashboard"],
    "/categorias": ["/transacoes", "/orcamento"],
    "/orcamento": ["/categorias", "/transacoes", "/dashboard"],
    "/perfil": ["/dashboard"],
}

# Collections each page reads when it renders.
ROUTE_DATA: dict[str, list[CacheKind]] = {
    "/dashboard": [CacheKind.transactions, CacheKind.categories, CacheKind.cards],
    "/transacoes": [CacheKind.transactions, CacheKind.categories, CacheKind.cards],
    "/transacoes-fixas": [CacheKind.recurring, CacheKind.categories, CacheKind.cards],
    "/cartoes": [CacheKind.cards],
    "/categorias": [CacheKind.categories],
    "/orcamento": [CacheKind.budgets, CacheKind.categories, CacheKind.transactions],
}


def related_routes(route: str) -> list[str]:
    return list(RELATED_ROUTES.get(route, []))


class PrefetchAdvisor:
    """Best-effort warming of likely next pages. Nothing here ever raises."""

    def __init__(
        self,
        cache: TTLCache,
        dispatch: Callable[[str], None],
        schedule: Optional[Callable[[Callable[[], None], float, str], None]] = None,
        delay: float = PREFETCH_DELAY,
        enabled: bool = True,
    ) -> None:
        self.cache = cache
        self.enabled = enabled
        self.delay = delay
        self._dispatch = dispatch
        self._schedule = schedule
        self._queue: list[str] = []
        self._lock = threading.Lock()

    @property
    def queued(self) -> list[str]:
        with self._lock:
            return list(self._queue)

    def prefetch_route(self, route: str) -> None:
        if not self.enabled:
            return
        with self._lock:
            if route in self._queue:
                return
            self._queue.append(route)
        if self._schedule is not None:
            self._schedule(self.flush, self.delay, FLUSH_JOB_ID)

    def flush(self) -> int:
        with self._lock:
            routes, self._queue = self._queue, []
        for route in routes:
            try:
                self._dispatch(route)
            except Exception:
                logger.exception(f"prefetch_route_failed: route={route}")
        if routes:
            logger.info(f"prefetch_flush: routes={len(routes)}")
        return len(routes)

    def prefetch_data(
        self, key: str, fetcher: Callable[[], Any], ttl: Optional[float] = None
    ) -> None:
        if self.cache.has(key):
            return
        try:
            data = fetcher()
        except Exception as exc:
            logger.warning(f"prefetch_data_failed: key={key} error={exc!r}")
            return
        self.cache.set(key, data, ttl)

    def navigate(self, route: str) -> list[str]:
        related = [r for r in related_routes(route) if r != route]
        for related_route in related:
            self.prefetch_route(related_route)
        return related

    def prefetch_likely_routes(self) -> None:
        for route in LIKELY_ROUTES:
            self.prefetch_route(route)
