"""Periodic reconciliation scheduler."""
import logging
import asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from alphachecker.core.config import settings
from alphachecker.core.container import ServiceContainer, build_container

logger = logging.getLogger(__name__)


class ReconcileScheduler:
    """Scheduler for the reconciliation pass and the tracked-token refresh."""
    
    def __init__(self, container: ServiceContainer):
        logger.info("Initializing ReconcileScheduler...")
        self.container = container
        self.config = container.settings
        self.scheduler = AsyncIOScheduler()
    
    async def run_reconciliation(self):
        """Run one full reconciliation pass."""
        try:
            tokens = await self.container.reconciler.reconcile()
            listed = sum(1 for token in tokens if token.futures_listed)
            logger.info(f"Reconciled {len(tokens)} alpha tokens ({listed} with futures)")
        except Exception as e:
            logger.error(f"Reconciliation pass failed: {e}", exc_info=True)
    
    async def refresh_tracked(self):
        """Re-verify stale tracked tokens."""
        try:
            outcomes = await self.container.reconciler.refresh_tracked()
            logger.info(f"Refreshed futures status for {len(outcomes)} tracked tokens")
        except Exception as e:
            logger.error(f"Tracked token refresh failed: {e}", exc_info=True)
    
    def start(self):
        """Start the scheduler with its interval jobs."""
        logger.info("="*60)
        logger.info("Starting reconcile scheduler...")
        logger.info(f"Log level: {self.config.log_level}")
        logger.info(f"Reconciliation cadence: every {self.config.reconcile_interval_minutes} minutes")
        logger.info(f"Tracked refresh cadence: every {self.config.tracked_refresh_interval_minutes} minutes")
        logger.info("="*60)
        
        self.scheduler.add_job(
            self.run_reconciliation,
            trigger=IntervalTrigger(minutes=self.config.reconcile_interval_minutes),
            id="reconcile_universe",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        
        self.scheduler.add_job(
            self.refresh_tracked,
            trigger=IntervalTrigger(minutes=self.config.tracked_refresh_interval_minutes),
            id="refresh_tracked",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        
        self.scheduler.start()
        logger.info("Scheduler started successfully")
    
    async def run(self):
        """Run scheduler indefinitely."""
        await self.container.start()
        self.start()
        
        # Reconcile once right away instead of waiting a full interval
        await self.run_reconciliation()
        
        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down scheduler...")
        finally:
            self.scheduler.shutdown()
            await self.container.aclose()


async def main():
    """Main entry point for scheduler."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    scheduler = ReconcileScheduler(build_container(settings))
    await scheduler.run()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
