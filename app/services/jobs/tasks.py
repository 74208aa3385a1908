"""
Dramatiq Background Tasks
Processes Nylas webhook deltas outside the request cycle
"""
import asyncio
import logging
from typing import Any, Dict, List

import dramatiq
import httpx

from app.services.jobs.broker import broker  # noqa: F401  (registers the broker before actors)

logger = logging.getLogger(__name__)


def get_worker_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from app.core.config import get_settings
    from app.core.dependencies import create_supabase_client

    settings = get_settings()
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout))
    supabase = create_supabase_client(settings)
    return settings, http_client, supabase


async def _apply_deltas_with_cleanup(settings, http_client: httpx.AsyncClient, supabase, deltas: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Apply each delta in order and close the HTTP client in the same event loop.

    A failing delta is logged and counted; the rest of the batch still runs.
    """
    from app.services.sync.orchestration.delta_sync import apply_nylas_delta

    outcomes = {"upserted": 0, "deleted": 0, "skipped": 0, "failed": 0}
    try:
        for delta in deltas:
            try:
                outcome = await apply_nylas_delta(http_client, supabase, settings, delta)
                outcomes[outcome] += 1
            except Exception as e:
                outcomes["failed"] += 1
                logger.error(f"❌ Failed to apply delta {delta.get('type')}: {e}")
        return outcomes
    finally:
        await http_client.aclose()


@dramatiq.actor(max_retries=0)
def process_nylas_deltas_task(deltas: List[Dict[str, Any]]):
    """
    Background job for Nylas webhook notifications.

    Args:
        deltas: [{"type", "object", "object_data": {"id", "grant_id", ...}}, ...]
    """
    logger.info(f"🚀 Processing {len(deltas)} Nylas deltas")

    settings, http_client, supabase = get_worker_dependencies()
    outcomes = asyncio.run(_apply_deltas_with_cleanup(settings, http_client, supabase, deltas))

    logger.info(f"✅ Nylas deltas processed: {outcomes}")
    return outcomes
