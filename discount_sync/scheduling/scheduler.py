import logging
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from ..config import LOG_LEVEL, SCHEDULER_TIMEZONE, SWEEP_CRON
from ..utils.logger import configure_logging
from .jobs import job_sweep_expired_discounts


def build_scheduler(cron: str = SWEEP_CRON, timezone: str = SCHEDULER_TIMEZONE) -> BlockingScheduler:
    sched = BlockingScheduler(timezone=timezone)
    sched.add_job(job_sweep_expired_discounts, CronTrigger.from_crontab(cron, timezone=timezone),
                  id="discount_sweep", max_instances=1, coalesce=True)
    return sched


def start_scheduler():
    configure_logging(LOG_LEVEL)
    logging.getLogger(__name__).info("Starting scheduler")
    build_scheduler().start()


if __name__ == "__main__":
    start_scheduler()
