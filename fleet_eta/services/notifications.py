"""
Arrival notifications.

Riders register an Expo push token for a vehicle and a lead time in
minutes. Once that vehicle's ETA drops to the lead time, one push is sent
per subscription.
"""

import re
import httpx
from dataclasses import dataclass
from typing import Dict, List, Optional

from fleet_eta.core.config import settings
from fleet_eta.core.logger import logger
from fleet_eta.schemas.tracking import ETAPayload

EXPO_TOKEN_PATTERN = re.compile(r"^(Exponent|Expo)PushToken\[.+\]$")


def is_expo_push_token(token: str) -> bool:
    return bool(token) and EXPO_TOKEN_PATTERN.match(token) is not None


@dataclass
class NotificationSubscription:
    push_token: str
    notification_minutes: int
    notified: bool = False


class NotificationService:
    """In-memory subscription registry plus Expo push delivery"""

    def __init__(
        self,
        push_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.push_url = push_url or settings.EXPO_PUSH_URL
        self._transport = transport
        self._subscriptions: Dict[str, List[NotificationSubscription]] = {}

    def subscriptions_for(self, vehicle_id: str) -> List[NotificationSubscription]:
        return list(self._subscriptions.get(vehicle_id, []))

    def register(self, vehicle_id: str, notification_minutes: int, push_token: str) -> NotificationSubscription:
        """
        Register (or re-arm) a subscription.

        Raises:
            ValueError: If the push token is not an Expo push token
        """
        if not is_expo_push_token(push_token):
            raise ValueError("Invalid Expo push token")

        subscriptions = self._subscriptions.setdefault(vehicle_id, [])
        subscription = NotificationSubscription(push_token=push_token, notification_minutes=notification_minutes)

        for i, existing in enumerate(subscriptions):
            if existing.push_token == push_token:
                subscriptions[i] = subscription
                break
        else:
            subscriptions.append(subscription)

        logger.info(
            f"Notification registered for vehicle {vehicle_id}: {notification_minutes} min, "
            f"token: {push_token[:20]}..."
        )
        return subscription

    def unregister(self, vehicle_id: str, push_token: str) -> bool:
        subscriptions = self._subscriptions.get(vehicle_id)
        if not subscriptions:
            return False

        remaining = [s for s in subscriptions if s.push_token != push_token]
        if len(remaining) == len(subscriptions):
            return False

        if remaining:
            self._subscriptions[vehicle_id] = remaining
        else:
            del self._subscriptions[vehicle_id]
        logger.info(f"Notification unregistered for vehicle {vehicle_id}")
        return True

    async def handle_payload(self, payload: ETAPayload) -> int:
        """
        Send pushes for subscriptions whose lead time has been reached.

        Returns:
            Number of subscriptions notified
        """
        subscriptions = self._subscriptions.get(payload.vehicle_id)
        if not subscriptions or payload.eta is None or payload.status == "offline":
            return 0

        due = [s for s in subscriptions if not s.notified and payload.eta <= s.notification_minutes]
        for subscription in due:
            subscription.notified = True
            await self._send_push(
                subscription.push_token,
                title=f"Bus {payload.plate_label} arriving soon!",
                body=f"ETA: {payload.eta} min",
                data={"vehicle_id": payload.vehicle_id, "eta": payload.eta},
            )
        return len(due)

    async def _send_push(self, push_token: str, title: str, body: str, data: dict):
        message = {"to": push_token, "sound": "default", "title": title, "body": body, "data": data}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self.push_url, json=message)
                response.raise_for_status()
            logger.info(f"Push sent to {push_token[:20]}...")
        except httpx.HTTPError as e:
            logger.error(f"Push notification failed for {push_token[:20]}...: {type(e).__name__} - {str(e)}")
