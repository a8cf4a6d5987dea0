"""
Fleet Tracker Service

Background service that runs one processing cycle for the whole fleet every
polling interval: fetch fixes, run each through the ETA pipeline, broadcast
the payloads and a fleet snapshot.

Cycles are serialized: the next one starts only after every vehicle of the
previous one has finished. Within a cycle vehicles are processed
concurrently, bounded by a semaphore. Each payload is published as soon as
its vehicle is done; the snapshot follows once the whole cycle has finished.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fleet_eta.core.config import settings
from fleet_eta.core.logger import logger, log_error, log_api_stats
from fleet_eta.schemas.tracking import Destination, ETAPayload, FleetSnapshot, RawFix
from fleet_eta.services.broadcast import Broadcaster, ROUTE_UPDATE_EVENT, SNAPSHOT_EVENT
from fleet_eta.services.eta_pipeline import ETAPipeline
from fleet_eta.services.fix_source import FixSourceError, create_fix_source
from fleet_eta.services.notifications import NotificationService
from fleet_eta.services.routing import create_routing_client

API_STATS_INTERVAL_SECONDS = 60


class FleetTracker:
    """Periodic driver for the ETA pipeline"""

    def __init__(
        self,
        pipeline: ETAPipeline,
        fix_source,
        destination: Destination,
        broadcaster: Broadcaster,
        notifications: Optional[NotificationService] = None,
        poll_interval: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.pipeline = pipeline
        self.fix_source = fix_source
        self.destination = destination
        self.broadcaster = broadcaster
        self.notifications = notifications
        self.poll_interval = poll_interval or settings.POLL_INTERVAL_SECONDS
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENT_PROVIDER_CALLS

        self.is_running = False
        self._task: Optional[asyncio.Task] = None

        self.latest_payloads: Dict[str, ETAPayload] = {}
        self.last_snapshot = FleetSnapshot()
        self.last_fetched_at: Optional[datetime] = None
        self.last_fetch_error: Optional[str] = None
        self._api_stats_since: Optional[datetime] = None

    async def _process(
        self,
        fix: RawFix,
        semaphore: asyncio.Semaphore,
        now: datetime,
        pushes: List[asyncio.Task],
    ) -> Optional[ETAPayload]:
        async with semaphore:
            try:
                payload = await self.pipeline.process_fix(fix, self.destination, now)
            except Exception as e:
                log_error(f"processing vehicle {fix.vehicle_id}", e)
                return None

        if payload is None:
            return None

        self.latest_payloads[payload.vehicle_id] = payload
        self.broadcaster.publish(ROUTE_UPDATE_EVENT, payload.model_dump(mode="json"))
        if self.notifications is not None:
            pushes.append(asyncio.create_task(self.notifications.handle_payload(payload)))
        return payload

    async def _collect_pushes(self, pushes: List[asyncio.Task]):
        results = await asyncio.gather(*pushes, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log_error("sending arrival notifications", result)

    async def run_cycle(self, now: Optional[datetime] = None) -> Optional[FleetSnapshot]:
        """
        Run one cycle for the whole fleet.

        Returns:
            The new snapshot, or None if the fleet fetch failed (the previous
            snapshot stays authoritative)
        """
        now = now or datetime.now(timezone.utc)

        try:
            fixes: List[RawFix] = await self.fix_source.fetch_fixes()
        except FixSourceError as e:
            self.last_fetch_error = str(e)
            logger.error(f"Device poll failed, skipping cycle: {e}")
            return None

        self.last_fetched_at = now
        self.last_fetch_error = None
        logger.info(f"Device poll: {len(fixes)} usable fixes, processing ETA")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        pushes: List[asyncio.Task] = []
        results = await asyncio.gather(*(self._process(fix, semaphore, now, pushes) for fix in fixes))
        payloads = [p for p in results if p is not None]

        self.last_snapshot = FleetSnapshot(timestamp=now, count=len(payloads), vehicles=payloads)
        self.broadcaster.publish(SNAPSHOT_EVENT, self.last_snapshot.model_dump(mode="json"))

        if pushes:
            await self._collect_pushes(pushes)

        self._maybe_log_api_stats(now)
        return self.last_snapshot

    def _maybe_log_api_stats(self, now: datetime):
        if self._api_stats_since is None:
            self._api_stats_since = now
            return

        elapsed = (now - self._api_stats_since).total_seconds()
        if elapsed >= API_STATS_INTERVAL_SECONDS:
            counts = self.pipeline.reset_api_stats()
            log_api_stats(counts["eta"], counts["route"], elapsed / 60)
            self._api_stats_since = now

    async def _periodic_poll(self):
        """Background task that runs one cycle per polling interval"""
        logger.info(f"Fleet tracker started (interval: {self.poll_interval}s)")

        while self.is_running:
            try:
                await self.run_cycle()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                logger.info("Fleet tracker cancelled")
                break
            except Exception as e:
                logger.error(f"Error in tracking cycle: {type(e).__name__} - {str(e)}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def start(self):
        """Start the background tracking loop"""
        if self.is_running:
            logger.warning("Fleet tracker already running")
            return

        self.is_running = True
        self._task = asyncio.create_task(self._periodic_poll())
        logger.info("Fleet tracker task created")

    async def stop(self):
        """Stop the background tracking loop"""
        if not self.is_running:
            return

        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Fleet tracker stopped")


def create_fleet_tracker() -> FleetTracker:
    """Wire the tracker from settings"""
    return FleetTracker(
        pipeline=ETAPipeline(create_routing_client()),
        fix_source=create_fix_source(),
        destination=Destination(lat=settings.DESTINATION_LAT, lon=settings.DESTINATION_LON),
        broadcaster=broadcaster,
        notifications=notification_service,
    )


# Singleton instances
broadcaster = Broadcaster()
notification_service = NotificationService()
fleet_tracker = create_fleet_tracker()
