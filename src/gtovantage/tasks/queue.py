"""SAQ queue configuration for background tasks."""

from saq import CronJob, Queue

from gtovantage.config import settings

# Main task queue
queue = Queue.from_url(settings.redis_url)


def get_queue_settings() -> dict:
    """Get SAQ queue settings for the worker."""
    # Import here to avoid circular imports
    from gtovantage.tasks.maintenance import SWEEP_CRON, sweep_verification_tokens

    return {
        "queue": queue,
        "functions": [sweep_verification_tokens],
        "cron_jobs": [CronJob(sweep_verification_tokens, cron=SWEEP_CRON)],
        "concurrency": 1,
        "startup": startup,
        "shutdown": shutdown,
    }


async def startup(_ctx: dict) -> None:
    """Called when worker starts."""
    from gtovantage.logging import setup_logging

    setup_logging()


async def shutdown(_ctx: dict) -> None:
    """Called when worker shuts down."""
    from gtovantage.database import close_db

    await close_db()
