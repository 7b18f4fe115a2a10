"""
Durable Recurring Scheduler

Runs the recurring processor server-side on a timer, so due obligations
are materialized even when nobody opens the app.

Each sweep:
1. Finds the households that have at least one due, active template
   (a system-level read of template metadata only)
2. Runs the processor for each household through the normal scoped path,
   attributing generated transactions to the configured system user

One household's failure is logged and audited and never stops the sweep.
Running alongside session-triggered processing is safe: the processor's
batch preconditions reject whichever run comes second.

Entry points:
- run_once()      one sweep (cron / Cloud Scheduler style)
- run_forever()   timer loop until stop() or SIGTERM/SIGINT
- main()          console script `homeledger-recurring`
"""

import argparse
import asyncio
import signal
from typing import Optional

import structlog

from homeledger.audit import AuditLogger, create_correlation_id
from homeledger.config import RecurringSettings, get_settings, validate_all_settings
from homeledger.models.reports import RecurringRunResult
from homeledger.queries.collections import Collections
from homeledger.recurring.processor import RecurringProcessor
from homeledger.services.storage.interface import DocumentStore, Query, where

logger = structlog.get_logger(__name__)


class RecurringScheduler:
    """
    Timer-driven worker over all households.

    Args:
        store: Document backend
        processor: Processor to run (built from store when None)
        settings: Recurring settings (loaded from the environment when None)
    """

    def __init__(
        self,
        store: DocumentStore,
        processor: Optional[RecurringProcessor] = None,
        settings: Optional[RecurringSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().recurring
        self._processor = processor or RecurringProcessor(
            store, settings=self._settings, audit_logger=audit_logger
        )
        self._stop_event: Optional[asyncio.Event] = None
        self.sweeps = 0

    async def households_with_due_templates(self) -> list[str]:
        """Distinct household IDs with due work, in first-due order."""
        query = Query(Collections.RECURRING_TRANSACTIONS, (
            where("active", "==", True),
            where("nextRunDate", "<=", self._store.now()),
        ))
        snapshots = await self._store.query(query)
        household_ids = [s.data.get("householdId") for s in snapshots]
        return list(dict.fromkeys(h for h in household_ids if h))

    async def run_once(self) -> list[RecurringRunResult]:
        """One sweep over every household with due templates."""
        correlation_id = create_correlation_id()
        household_ids = await self.households_with_due_templates()
        results = []

        for household_id in household_ids:
            result = await self._processor.run_safely(
                household_id,
                self._settings.system_user_id,
                correlation_id,
            )
            results.append(result)

        self.sweeps += 1
        logger.info(
            "recurring_sweep_completed",
            households=len(household_ids),
            created=sum(r.created_count for r in results),
            failed=sum(1 for r in results if not r.succeeded),
            correlation_id=str(correlation_id),
        )
        return results

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self, install_signal_handlers: bool = False) -> None:
        """
        Sweep every `scheduler_interval_seconds` until stopped.

        A failing sweep (e.g. the backend is down while listing
        households) is logged and retried on the next tick.
        """
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        if install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                try:
                    loop.add_signal_handler(sig, self.stop)
                except NotImplementedError:
                    # Windows event loops do not support signal handlers
                    pass

        logger.info("recurring_scheduler_started", interval=self._settings.scheduler_interval_seconds)
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error("recurring_sweep_failed", error_type=type(e).__name__, error=str(e))
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._settings.scheduler_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            if install_signal_handlers:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    try:
                        loop.remove_signal_handler(sig)
                    except NotImplementedError:
                        pass
            logger.info("recurring_scheduler_stopped", sweeps=self.sweeps)


def main(argv: Optional[list[str]] = None) -> int:
    """Console entry point: `homeledger-recurring [--once]`."""
    parser = argparse.ArgumentParser(description="Materialize due recurring transactions")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args(argv)

    checks = validate_all_settings()
    if not all(checks.get(name) for name in ("firebase", "recurring", "app")):
        logger.error("settings_invalid", **{k: v for k, v in checks.items() if k.endswith("_error")})
        return 2

    # Imported here so the in-memory paths never load the Firestore SDK
    from homeledger.services.storage.audit import DocumentAuditStorage
    from homeledger.services.storage.firestore import FirestoreDocumentStore

    store = FirestoreDocumentStore()
    scheduler = RecurringScheduler(store, audit_logger=AuditLogger(DocumentAuditStorage(store)))

    if args.once:
        results = asyncio.run(scheduler.run_once())
        return 1 if any(not r.succeeded for r in results) else 0

    asyncio.run(scheduler.run_forever(install_signal_handlers=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
