"""Expiry sweeper: periodically removes buckets whose TTL has elapsed."""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog

from bucketd.models import utcnow
from bucketd.registry import BucketRegistry

logger = structlog.get_logger()

# How often the loop wakes up to look for expired buckets
DEFAULT_INTERVAL_SECONDS = 60.0


class ExpirySweeper:
    """Deletes expired buckets through the registry's public contract."""

    def __init__(self, registry: BucketRegistry, interval_seconds: float = DEFAULT_INTERVAL_SECONDS):
        self.registry = registry
        self.interval_seconds = interval_seconds

    async def sweep_once(self, now: datetime | None = None) -> list[str]:
        """Remove every bucket expired at ``now``; returns the removed ids."""
        now = now or utcnow()
        removed = []
        for bucket in self.registry.list_all():
            bucket_id = bucket.id
            try:
                if not bucket.is_expired(now):
                    continue
                if await self.registry.delete(bucket_id, reason="expired") is not None:
                    removed.append(bucket_id)
            except Exception as e:
                logger.error("bucket_expiry_error", bucket_id=bucket_id, error=str(e))
        if removed:
            logger.info("sweep_complete", removed=len(removed), remaining=len(self.registry))
        return removed

    async def run(self) -> None:
        """Sweep forever, ``interval_seconds`` apart, until cancelled."""
        logger.info("expiry_sweeper_started", interval=self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("sweep_error", error=str(e))
