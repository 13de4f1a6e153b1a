# push_channels.py
"""
Push delivery channels.

- ExpoPushChannel: Expo push tokens, sent in chunks through the Expo push API
- FcmPushChannel: native Android/iOS tokens, sent one by one through Firebase

Channels never raise for delivery problems; they report them in a
DispatchResult.
"""
import asyncio
import json
from dataclasses import dataclass, field
from typing import Optional

import firebase_admin
import httpx
from firebase_admin import credentials, exceptions, messaging
from loguru import logger

EXPO_TOKEN_PREFIXES = ('ExponentPushToken[', 'ExpoPushToken[', 'ExpoToken[')


@dataclass
class DispatchResult:
    """Delivery summary for one notification."""
    sent: int = 0
    errors: int = 0
    invalid_recipients: list = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> None:
        self.sent += other.sent
        self.errors += other.errors
        self.invalid_recipients.extend(other.invalid_recipients)

    def as_dict(self) -> dict:
        return {
            "sent": self.sent,
            "errors": self.errors,
            "invalid_recipients": list(self.invalid_recipients),
        }


def is_expo_token(token: str) -> bool:
    """Tokens that look like Expo tokens go through Expo; everything else is FCM."""
    return token.startswith(EXPO_TOKEN_PREFIXES)


def is_valid_expo_token(token: str) -> bool:
    for prefix in EXPO_TOKEN_PREFIXES:
        if token.startswith(prefix):
            return token.endswith(']') and len(token) > len(prefix) + 1
    return False


def mask_token(token: str) -> str:
    return token[:30] + '...' if len(token) > 30 else token


def chunk_messages(messages: list, size: int) -> list[list]:
    return [messages[i:i + size] for i in range(0, len(messages), size)]


class ExpoPushChannel:
    """Sends notifications through the Expo push service."""

    def __init__(self, push_url: str, chunk_size: int = 100, timeout: float = 15.0,
                 sound: str = 'default', priority: str = 'high', channel_id: str = 'default',
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.push_url = push_url
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.sound = sound
        self.priority = priority
        self.channel_id = channel_id
        self._transport = transport  # injectable for tests

    async def send(self, tokens: list[str], title: str, body: str, data: Optional[dict] = None) -> DispatchResult:
        result = DispatchResult()

        valid_tokens = []
        for token in tokens:
            if is_valid_expo_token(token):
                valid_tokens.append(token)
            else:
                logger.warning(f"Invalid Expo push token: {mask_token(token)}")
                result.errors += 1
                result.invalid_recipients.append(token)

        if not valid_tokens:
            return result

        messages = [{
            "to": token,
            "sound": self.sound,
            "title": title,
            "body": body,
            "data": data or {},
            "priority": self.priority,
            "channelId": self.channel_id,
        } for token in valid_tokens]

        for chunk in chunk_messages(messages, self.chunk_size):
            try:
                tickets = await self._post_chunk(chunk)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Expo: chunk of {len(chunk)} failed: {str(e)[:100]}")
                result.errors += len(chunk)
                continue

            for index, message in enumerate(chunk):
                ticket = tickets[index] if index < len(tickets) else None
                if isinstance(ticket, dict) and ticket.get("status") == "ok":
                    result.sent += 1
                    continue

                result.errors += 1
                details = (ticket or {}).get("details") or {}
                logger.warning(f"Expo: error for {mask_token(message['to'])}: "
                               f"{(ticket or {}).get('message', 'no ticket returned')}")
                if details.get("error") == "DeviceNotRegistered":
                    result.invalid_recipients.append(message["to"])

        logger.debug(f"Expo: {result.sent} sent, {result.errors} errors")
        return result

    async def _post_chunk(self, chunk: list[dict]) -> list:
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                self.push_url,
                json=chunk,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()

        tickets = payload.get("data", []) if isinstance(payload, dict) else []
        if isinstance(tickets, dict):
            tickets = [tickets]
        return tickets


def initialize_firebase(project_id: Optional[str], private_key: Optional[str],
                        client_email: Optional[str]) -> bool:
    """
    Initialize the Firebase Admin SDK from service account fields.

    Returns:
        True if Firebase is ready for FCM sends
    """
    try:
        firebase_admin.get_app()
        logger.info("Firebase Admin SDK already initialized")
        return True
    except ValueError:
        pass

    if not project_id or not private_key or not client_email:
        logger.warning("Firebase credentials not configured, FCM notifications disabled "
                       "(set FIREBASE_PROJECT_ID, FIREBASE_PRIVATE_KEY, FIREBASE_CLIENT_EMAIL)")
        return False

    try:
        cred = credentials.Certificate({
            "type": "service_account",
            "project_id": project_id,
            # .env files carry the key with literal \n
            "private_key": private_key.replace('\\n', '\n'),
            "client_email": client_email,
            "token_uri": "https://oauth2.googleapis.com/token",
        })
        firebase_admin.initialize_app(cred)
    except (ValueError, exceptions.FirebaseError) as e:
        logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
        return False

    logger.info(f"Firebase Admin SDK initialized (project {project_id})")
    return True


class FcmPushChannel:
    """Sends notifications to native tokens through Firebase Cloud Messaging."""

    def __init__(self, available: bool = False, sound: str = 'default', channel_id: str = 'default'):
        self.available = available
        self.sound = sound
        self.channel_id = channel_id

    async def send(self, tokens: list[str], title: str, body: str, data: Optional[dict] = None) -> DispatchResult:
        if not self.available:
            logger.error(f"Firebase not initialized, cannot send {len(tokens)} FCM notification(s)")
            return DispatchResult(errors=len(tokens))

        result = DispatchResult()
        for token in tokens:
            ok, invalid = await asyncio.to_thread(self._send_one, token, title, body, data or {})
            if ok:
                result.sent += 1
            else:
                result.errors += 1
                if invalid:
                    result.invalid_recipients.append(token)

        logger.debug(f"FCM: {result.sent} sent, {result.errors} errors")
        return result

    def _build_message(self, token: str, title: str, body: str, data: dict) -> messaging.Message:
        # FCM data values must be strings
        fcm_data = {
            key: value if isinstance(value, str) else json.dumps(value, default=str)
            for key, value in data.items()
        }
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data=fcm_data,
            android=messaging.AndroidConfig(
                priority='high',
                notification=messaging.AndroidNotification(channel_id=self.channel_id, sound=self.sound),
            ),
            apns=messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound=self.sound))),
        )

    def _send_one(self, token: str, title: str, body: str, data: dict) -> tuple[bool, bool]:
        """Blocking send. Returns (sent, token_invalid)."""
        try:
            message_id = messaging.send(self._build_message(token, title, body, data))
        except (messaging.UnregisteredError, exceptions.InvalidArgumentError) as e:
            logger.warning(f"FCM: invalid token {mask_token(token)}: {e}")
            return False, True
        except (exceptions.FirebaseError, ValueError) as e:
            logger.error(f"FCM: error for {mask_token(token)}: {e}")
            return False, False

        logger.debug(f"FCM: sent to {mask_token(token)} (message {message_id})")
        return True, False
