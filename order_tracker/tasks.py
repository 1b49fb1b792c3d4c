"""
Celery Tasks
Background jobs that feed the real-time channel from outside the web process.
"""

import asyncio
import logging
import time
from datetime import datetime

import redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from order_tracker.celery_worker import celery_app
from order_tracker.core.config import get_settings
from order_tracker.database import build_engine
from order_tracker.schemas import DashboardStats
from order_tracker.services.notifications import stats_message
from order_tracker.services.orders import OrderStore
from order_tracker.services.realtime import encode_envelope

logger = logging.getLogger(__name__)
settings = get_settings()


async def collect_dashboard_stats(database_url: str) -> DashboardStats:
    """Compute the dashboard aggregates with a throwaway engine."""
    # The worker has no long-lived event loop, so no pooled connections
    engine = build_engine(database_url, poolclass=NullPool)
    try:
        session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        async with session_maker() as session:
            return DashboardStats(**await OrderStore(session).dashboard_stats())
    finally:
        await engine.dispose()


def publish_event(client: redis.Redis, room: str, event: str, payload) -> int:
    """Publish onto the channel the web workers listen to. Returns subscriber count."""
    return client.publish(settings.realtime_redis_channel, encode_envelope(room, event, payload))


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(RedisError, SQLAlchemyError),
    retry_backoff=True
)
def broadcast_dashboard_stats(self) -> dict:
    """
    Push fresh dashboard stats to every connected administrator.

    Administrators who are offline miss the push; the dashboard fetches
    /api/admin/stats when it (re)connects.
    """
    task_id = self.request.id
    start_time = time.time()

    stats = asyncio.run(collect_dashboard_stats(settings.database_url))

    client = redis.Redis.from_url(settings.redis_url)
    try:
        receivers = publish_event(client, *stats_message(stats))
    finally:
        client.close()

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"📊 Task {task_id}: stats published to {receivers} process(es) in {elapsed}s")

    return {
        'success': True,
        'task_id': task_id,
        'receivers': receivers,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
