# shopcheckout/services/scheduler.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from shopcheckout.core.config import settings
from shopcheckout.core.logging_config import throttled_log

logger = logging.getLogger(__name__)


class DebouncedRecompute:
    """
    Debounce + throttle для пересчета, который запускается частыми действиями
    пользователя (выбор позиций, ваучеров, адреса).

    - trigger() отменяет ожидающий таймер и ставит новый на debounce_ms.
    - Когда таймер срабатывает раньше, чем прошло throttle_ms с последнего
      запуска, он досыпает оставшееся время: последний ввод все равно будет посчитан.
    - Уже начатый расчет не прерывается, но его результат публикуется только
      если за это время не было нового trigger() (устаревший результат отбрасывается).
    """

    def __init__(
        self,
        compute: Callable[[Any], Awaitable[Any]],
        debounce_ms: Optional[int] = None,
        throttle_ms: Optional[int] = None,
        name: str = "recompute",
    ):
        self._compute = compute
        self.debounce = (settings.RECOMPUTE_DEBOUNCE_MS if debounce_ms is None else debounce_ms) / 1000
        self.throttle = (settings.RECOMPUTE_THROTTLE_MS if throttle_ms is None else throttle_ms) / 1000
        self.name = name
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()
        self._last_started: Optional[float] = None
        self.latest: Any = None
        self.latest_generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return (self._timer is not None and not self._timer.done()) or bool(self._running)

    def trigger(self, snapshot: Any) -> int:
        self._generation += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._fire(self._generation, snapshot))
        return self._generation

    async def _fire(self, generation: int, snapshot: Any) -> None:
        loop = asyncio.get_running_loop()
        await asyncio.sleep(self.debounce)
        if self._last_started is not None:
            remaining = self.throttle - (loop.time() - self._last_started)
            if remaining > 0:
                await asyncio.sleep(remaining)

        # С этого момента новый trigger() не отменяет расчет
        task = asyncio.current_task()
        if self._timer is task:
            self._timer = None
        self._running.add(task)
        self._last_started = loop.time()
        try:
            result = await self._compute(snapshot)
        except Exception:
            logger.error(f"{self.name}: computation for generation {generation} failed", exc_info=True)
            return
        finally:
            self._running.discard(task)

        if generation != self._generation:
            throttled_log(
                f"{self.name}-stale",
                lambda: logger.info(f"{self.name}: discarding stale result of generation {generation}"),
            )
            return
        self.latest = result
        self.latest_generation = generation

    async def wait(self) -> Any:
        """Дожидается всех запланированных и идущих расчетов, возвращает последний результат."""
        while True:
            tasks = [t for t in (self._timer, *self._running) if t is not None and not t.done()]
            if not tasks:
                return self.latest
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        for task in (self._timer, *self._running):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(*(t for t in (self._timer, *self._running) if t is not None), return_exceptions=True)
        self._timer = None
        self._running.clear()
