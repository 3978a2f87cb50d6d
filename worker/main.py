"""
Celery worker application
"""
import sys
from typing import Any, Dict

from celery import Celery
import structlog

from api.config import settings
from api.utils.logger import setup_logging

logger = structlog.get_logger()

celery_app = Celery(
    "livephoto_worker",
    broker=settings.QUEUE_URL or settings.REDIS_URL,
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@celery_app.task(name="worker.process_video")
def process_video(video_id: str, video_url: str) -> Dict[str, Any]:
    from worker.tasks import process_video as run
    return run(video_id, video_url)


def main() -> None:
    setup_logging()
    logger.info("Starting worker", broker=celery_app.conf.broker_url)
    celery_app.worker_main(argv=["worker", "--loglevel=INFO", *sys.argv[1:]])


if __name__ == "__main__":
    main()
