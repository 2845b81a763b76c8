import asyncio
import schedule
import logging
from typing import Awaitable, List

from backend.channels import CALIBRATION_REFRESH_S
from backend.correction import CorrectionApplier


def run_schedule(applier: CorrectionApplier, interval_s: int = CALIBRATION_REFRESH_S) -> asyncio.Task :
    """Schedule periodic refresh of the calibration cache on the running event loop."""
    scheduler = schedule.Scheduler()
    pending: List[Awaitable] = []

    def job() :
        pending.append(applier.refresh())

    scheduler.every(interval_s).seconds.do(job)

    async def run_continuously() :
        while True :
            scheduler.run_pending()
            while pending :
                try :
                    await pending.pop(0)
                except Exception as e :
                    logging.error(f"Scheduled job failed: {e}")
            await asyncio.sleep(1)

    task = asyncio.create_task(run_continuously())
    logging.info(f"Calibration refresh scheduled every {interval_s}s")
    return task
