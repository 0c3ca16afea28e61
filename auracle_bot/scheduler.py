"""
Scheduler module for periodic reconciliation ticks.

This module provides scheduling functionality using APScheduler to run the
tick function at a fixed interval. It handles overlap prevention (a tick
never runs concurrently with another against the same ledger), error
handling so a failed tick never stops the schedule, and graceful shutdown.
"""

import logging
import threading
from typing import Any, Callable, Optional, TypeVar
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
import pytz

from auracle_bot.config import Config, MIN_POLL_INTERVAL_SECONDS

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


class Scheduler:
    """
    Scheduler for periodic tick execution.

    Manages scheduled execution of the tick with overlap prevention,
    error handling, and graceful shutdown support.
    """

    def __init__(self, tick_function: Optional[Callable[[], Any]] = None):
        """
        Initialize the scheduler.

        Args:
            tick_function: Callable running one tick; may also be given to start()
        """
        self.scheduler: Optional[BackgroundScheduler] = None
        self.tick_function: Optional[Callable[[], Any]] = tick_function
        self.is_running = False
        self.interval_seconds: Optional[int] = None
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._execution_lock = threading.Lock()
        self._job_id = "tick_job"

    def start(
        self,
        tick_function: Optional[Callable[[], Any]] = None,
        interval_seconds: Optional[int] = None
    ) -> bool:
        """
        Start the scheduler with the given tick function.

        Args:
            tick_function: Callable that executes one tick
            interval_seconds: Seconds between ticks. If None, uses Config.POLL_INTERVAL_SECONDS

        Returns:
            True if scheduler started successfully, False otherwise
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return False

        tick_function = tick_function or self.tick_function
        if not callable(tick_function):
            logger.error("tick_function must be callable")
            return False

        self.tick_function = tick_function

        # Use config interval if not provided
        if interval_seconds is None:
            interval_seconds = Config.POLL_INTERVAL_SECONDS

        if interval_seconds < MIN_POLL_INTERVAL_SECONDS:
            logger.warning(
                f"Interval {interval_seconds}s below minimum, using {MIN_POLL_INTERVAL_SECONDS}s"
            )
            interval_seconds = MIN_POLL_INTERVAL_SECONDS

        try:
            # Create scheduler with timezone support
            tz = pytz.timezone(Config.TIMEZONE)
            self.scheduler = BackgroundScheduler(timezone=tz)

            # Add event listeners for monitoring
            self.scheduler.add_listener(
                self._on_job_executed,
                EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
            )

            trigger = IntervalTrigger(seconds=interval_seconds, timezone=tz)
            self.scheduler.add_job(
                func=self._safe_execute_tick,
                trigger=trigger,
                id=self._job_id,
                name="Reconciliation Tick",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping runs
                coalesce=True
            )

            self.scheduler.start()
            self.is_running = True
            self.interval_seconds = interval_seconds

            logger.info(f"Scheduler started with {interval_seconds}s interval")
            return True

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)
            self.is_running = False
            return False

    def stop(self, wait: bool = True) -> bool:
        """
        Stop the scheduler gracefully.

        Args:
            wait: Whether to wait for a running tick to complete

        Returns:
            True if scheduler stopped successfully, False otherwise
        """
        if not self.is_running or not self.scheduler:
            logger.warning("Scheduler is not running")
            return False

        try:
            logger.info("Stopping scheduler...")
            self.scheduler.shutdown(wait=wait)

            self.is_running = False
            self.scheduler = None

            logger.info("Scheduler stopped successfully")
            return True

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}", exc_info=True)
            return False

    def run_now(self) -> bool:
        """
        Run one tick immediately on the calling thread.

        Returns:
            True if the tick ran, False if another tick was in progress
        """
        return self._safe_execute_tick()

    def run_exclusive(self, function: Callable[[], T]) -> T:
        """
        Run a function while no tick is in progress.

        Blocks until a running tick finishes, and holds off new ticks until
        the function returns. Used for commands that change the live ledger.

        Args:
            function: Callable to run

        Returns:
            Whatever the function returns
        """
        with self._execution_lock:
            return function()

    def _safe_execute_tick(self) -> bool:
        """
        Safely execute the tick function with overlap prevention.

        A fire that arrives while a tick is in progress is discarded. Errors
        are logged and swallowed so the next scheduled fire still happens.

        Returns:
            True if the tick function was invoked, False if skipped
        """
        if not self._execution_lock.acquire(blocking=False):
            logger.warning("Tick skipped: previous tick still in progress")
            return False

        start_time = datetime.now(timezone.utc)

        try:
            if not self.tick_function:
                logger.error("Tick function not set")
                return False

            logger.info(f"[tick] START {start_time.isoformat()}")
            self.tick_function()
            self.last_error = None
            return True

        except KeyboardInterrupt:
            logger.warning("Tick interrupted by user")
            raise  # Re-raise to allow scheduler to handle it

        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Tick failed: {e}", exc_info=True)
            return True

        finally:
            end_time = datetime.now(timezone.utc)
            duration = (end_time - start_time).total_seconds()
            self.last_run_at = end_time
            logger.info(f"[tick] END {end_time.isoformat()} elapsed {duration:.2f}s")
            # Always release the lock
            self._execution_lock.release()

    def _on_job_executed(self, event) -> None:
        """
        Event listener for job execution events.

        Args:
            event: APScheduler event object
        """
        if event.exception:
            logger.error(f"Job {event.job_id} raised an exception: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed successfully")

    def get_next_run_time(self) -> Optional[datetime]:
        """
        Get the next scheduled run time.

        Returns:
            Next run time as datetime, or None if scheduler is not running
        """
        if not self.is_running or not self.scheduler:
            return None

        job = self.scheduler.get_job(self._job_id)
        return job.next_run_time if job else None

    def is_tick_running(self) -> bool:
        return self._execution_lock.locked()

    def get_status(self) -> dict:
        """
        Get current scheduler status.

        Returns:
            Dictionary with scheduler status information
        """
        next_run = self.get_next_run_time()
        return {
            "is_running": self.is_running,
            "tick_running": self.is_tick_running(),
            "interval_seconds": self.interval_seconds if self.is_running else None,
            "next_run_time": next_run.isoformat() if next_run else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
