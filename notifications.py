# notifications.py
"""
Notification dispatch gateway.

Routes each recipient to its delivery channel (Expo or native FCM) and
returns a single DispatchResult. dispatch() never raises, so a delivery
problem can't break the ship check cycle.
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from geo import format_distance
from push_channels import DispatchResult, ExpoPushChannel, FcmPushChannel, is_expo_token
from ship_registry import ShipRecord

SHIP_DETECTED_TITLE = '🚢 Nouveau navire détecté !'
UNKNOWN_SHIP_NAME = 'Navire inconnu'
REGISTRATION_TITLE = 'TrackShip activé'


class NotificationGateway:
    """Single entry point for sending a notification to a list of recipients."""

    def __init__(self, expo: ExpoPushChannel, fcm: FcmPushChannel):
        self.expo = expo
        self.fcm = fcm

    async def dispatch(self, recipients: Iterable[str], title: str, body: str,
                       data: Optional[dict] = None) -> DispatchResult:
        """
        Send one notification to every recipient.

        Args:
            recipients: Expo and/or FCM tokens (duplicates are sent once)
            title: Notification title
            body: Notification body
            data: Structured payload delivered with the notification

        Returns:
            DispatchResult with sent/error counts and tokens to prune
        """
        recipients = list(dict.fromkeys(r for r in recipients if r))
        result = DispatchResult()

        if not recipients:
            logger.warning("No recipients to send notification to")
            return result

        expo_tokens = [r for r in recipients if is_expo_token(r)]
        fcm_tokens = [r for r in recipients if not is_expo_token(r)]

        for name, channel, tokens in (("Expo", self.expo, expo_tokens), ("FCM", self.fcm, fcm_tokens)):
            if not tokens:
                continue
            try:
                result.merge(await channel.send(tokens, title, body, data))
            except Exception as e:
                logger.error(f"{name} channel failed for {len(tokens)} recipient(s): {str(e)[:100]}")
                result.errors += len(tokens)

        logger.info(f"Notification '{title}': {result.sent} sent, {result.errors} errors, "
                    f"{len(result.invalid_recipients)} invalid recipient(s)")
        return result


def build_ship_detected_message(ship: ShipRecord, zone: Optional[str] = None) -> tuple[str, str, dict]:
    """
    Build title, body and data for a new ship arrival.

    Returns:
        Tuple of (title, body, data)
    """
    distance_km = f"{ship.distance / 1000:.1f}"
    body = f"{ship.name or UNKNOWN_SHIP_NAME} est à {distance_km}km de votre position"

    data = {
        "type": "ship_detected",
        "ship": {
            "identity": ship.identity,
            "mmsi": ship.mmsi,
            "name": ship.name,
            "lat": ship.lat,
            "lon": ship.lon,
            "course": ship.course,
            "speed": ship.speed,
            "heading": ship.heading,
        },
        "distance": ship.distance,
        "zone": zone,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return SHIP_DETECTED_TITLE, body, data


async def send_ship_detected_notification(gateway: NotificationGateway, recipients: Iterable[str],
                                          ship: ShipRecord, zone: Optional[str] = None) -> DispatchResult:
    title, body, data = build_ship_detected_message(ship, zone)
    return await gateway.dispatch(recipients, title, body, data)


async def send_registration_confirmation(gateway: NotificationGateway, token: str,
                                         boundary_m: float) -> DispatchResult:
    """Confirm a new registration to the device that just registered."""
    body = f"Vous recevrez des notifications quand un navire entre dans la zone de {format_distance(boundary_m)}"
    return await gateway.dispatch([token], REGISTRATION_TITLE, body, {"type": "registration_confirmation"})
