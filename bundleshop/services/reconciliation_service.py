# bundleshop/services/reconciliation_service.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from ..config import Config


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationService:
    """Time-based triage of orders stuck in QUEUED/PROCESSING.

    The supplier has no order-status endpoint, so nothing here re-checks with
    them: old orders are either flagged for an operator or, when
    ``auto_fulfill_after_minutes`` is given, stamped FULFILLED. The latter marks
    an order delivered without proof and is off unless configured.

    Boundaries: an order is stuck when strictly older than the stuck threshold;
    it is auto-fulfilled when its age is at least the auto-fulfill threshold.
    """

    def __init__(self, orders, fulfillment, clock: Callable[[], datetime] = utcnow):
        self.orders = orders
        self.fulfillment = fulfillment
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, stuck_after_minutes: int = 30,
                    auto_fulfill_after_minutes: Optional[int] = None) -> Dict[str, Any]:
        result = {
            "processed": 0,
            "flagged": 0,
            "auto_fulfilled": 0,
            "errors": []
        }

        now = self.clock()
        cutoff = now - timedelta(minutes=stuck_after_minutes)
        try:
            stuck_orders = await self.orders.get_stuck_orders(cutoff)
        except Exception as e:
            self.logger.error(f"Reconciliation error: {e}")
            result["errors"].append(str(e))
            return result

        self.logger.info(f"Reconciliation: found {len(stuck_orders)} stuck orders (> {stuck_after_minutes} min)")
        result["processed"] = len(stuck_orders)

        for order in stuck_orders:
            try:
                age = now - order.last_touched_at
                age_minutes = age.total_seconds() / 60

                if auto_fulfill_after_minutes is not None and age >= timedelta(minutes=auto_fulfill_after_minutes):
                    updated = await self.fulfillment.auto_fulfill(order)
                    if updated:
                        self.logger.warning(f"Order {order.id} auto-fulfilled after {age_minutes:.0f} min")
                        result["auto_fulfilled"] += 1
                    else:
                        self.logger.info(f"Order {order.id} changed during sweep; left alone")
                else:
                    self.logger.info(f"Order {order.id} stuck for {age_minutes:.0f} min - flagged for review")
                    result["flagged"] += 1
            except Exception as e:
                self.logger.error(f"Reconciliation failed for order {order.id}: {e}")
                result["errors"].append(f"Order {order.id}: {e}")

        self.logger.info(f"Reconciliation completed: {result}")
        return result

    async def stuck_count(self, stuck_after_minutes: int = 30) -> int:
        cutoff = self.clock() - timedelta(minutes=stuck_after_minutes)
        return await self.orders.count_stuck_orders(cutoff)

    async def _run_forever(self, interval_seconds: int):
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sweep(Config.STUCK_AFTER_MINUTES, Config.AUTO_FULFILL_AFTER_MINUTES)

    def start(self, interval_seconds: Optional[int] = None) -> asyncio.Task:
        """Run ``sweep`` on a fixed interval in the background"""
        interval = interval_seconds or Config.SWEEP_INTERVAL_SECONDS
        self._task = asyncio.create_task(self._run_forever(interval), name="reconciliation-sweep")
        self.logger.info(f"Reconciliation sweep scheduled every {interval}s")
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
