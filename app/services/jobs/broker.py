"""
Dramatiq Broker Configuration
Handles the background queue for Nylas webhook deltas

REDIS_URL set   -> RedisBroker (API and worker share the queue)
REDIS_URL unset -> StubBroker (in-memory; used in development and tests)
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def _middleware():
    # TimeLimit excluded (Python 3.13 incompatibility)
    return [
        AgeLimit(),
        Retries(max_retries=0),
        Callbacks(),
        Pipelines(),
        ShutdownNotifications(),
    ]


def create_broker(redis_url=None) -> dramatiq.Broker:
    if not redis_url:
        logger.warning("⚠️  REDIS_URL not set - webhook deltas use the in-memory stub broker")
        return StubBroker(middleware=_middleware())

    redis_broker = RedisBroker(url=redis_url, middleware=_middleware())
    logger.info(f"✅ Redis broker initialized: {redis_url[:20]}...")
    return redis_broker


broker = create_broker(get_settings().redis_url)
dramatiq.set_broker(broker)
