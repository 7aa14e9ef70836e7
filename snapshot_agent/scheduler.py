"""
APScheduler configuration for the snapshot agent.

Runs the backup cycle on a fixed interval, starting immediately. A single
worker thread and ``max_instances=1`` guarantee that a cycle never starts
while the previous one is still running.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from .backup.executor import FATAL_ERRORS


logger = logging.getLogger(__name__)

SNAPSHOT_JOB_ID = 'raft_snapshot'

# Global scheduler instance and the agent it drives
scheduler = None
snapshot_agent = None

# Set when a cycle hit an error that stopped the scheduler
fatal_error = None


def init_scheduler(agent, frequency: timedelta):
    """
    Initialize and configure APScheduler.

    Args:
        agent: SnapshotAgent whose cycles are scheduled
        frequency: Interval between cycle starts
    """
    global scheduler, snapshot_agent, fatal_error

    if scheduler is not None:
        return scheduler

    snapshot_agent = agent
    fatal_error = None

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine missed runs into one
        'max_instances': 1,  # Never overlap cycles
        'misfire_grace_time': None  # Always run a late cycle
    }

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    scheduler.add_job(
        func=_run_cycle_wrapper,
        trigger=IntervalTrigger(seconds=frequency.total_seconds(), timezone='UTC'),
        id=SNAPSHOT_JOB_ID,
        name='Raft Snapshot',
        next_run_time=datetime.now(timezone.utc),
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    job = scheduler.get_job(SNAPSHOT_JOB_ID)
    if job is not None:
        logger.info(f"Scheduling {job.name} ({job.trigger})")

    scheduler.start()
    logger.info("APScheduler stopped")


def stop_scheduler(wait: bool = False):
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("APScheduler shutdown requested")


def _run_cycle_wrapper():
    """
    Run one cycle in scheduler context.

    Fatal errors are recorded and stop the scheduler; any other failure is
    logged and the next tick runs as usual.
    """
    global fatal_error

    try:
        snapshot_agent.run_cycle()
    except FATAL_ERRORS as e:
        logger.critical(f"{type(e).__name__}: {e}. Stopping snapshot agent.")
        fatal_error = e
        stop_scheduler()
    except Exception:
        logger.exception("Snapshot cycle failed, retrying at next interval")
