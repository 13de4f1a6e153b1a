#!/usr/bin/env python3
"""
TrackShip Notification Tests

Tests delivery without touching the real push services:
- Gateway routing (Expo vs FCM), dedupe, failure containment
- Expo chunking and ticket handling (httpx MockTransport)
- FCM error mapping (patched firebase messaging.send)
- Message content

Run with: python3 test_notifications.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import unittest
from unittest.mock import patch

import httpx
from firebase_admin import messaging
from loguru import logger

import push_channels
from notifications import (
    NotificationGateway, build_ship_detected_message, send_ship_detected_notification,
    send_registration_confirmation, SHIP_DETECTED_TITLE, REGISTRATION_TITLE, UNKNOWN_SHIP_NAME,
)
from push_channels import (
    DispatchResult, ExpoPushChannel, FcmPushChannel, is_expo_token, is_valid_expo_token,
    mask_token, chunk_messages,
)
from ship_registry import ShipRecord

PUSH_URL = "https://expo.test/--/api/v2/push/send"
FCM_TOKEN = "fcm-token-" + "x" * 40


def expo_tokens(n):
    return [f"ExponentPushToken[token{i}]" for i in range(n)]


class RecordingChannel:
    def __init__(self, raises=None):
        self.raises = raises
        self.calls = []

    async def send(self, tokens, title, body, data=None):
        self.calls.append(list(tokens))
        if self.raises:
            raise self.raises
        return DispatchResult(sent=len(tokens))


def ok_tickets_handler(posted):
    def handler(request):
        chunk = json.loads(request.content)
        posted.append(chunk)
        return httpx.Response(200, json={"data": [{"status": "ok", "id": str(i)} for i in range(len(chunk))]})
    return handler


class TestTokenHelpers(unittest.TestCase):

    def test_expo_prefixes(self):
        self.assertTrue(is_expo_token("ExponentPushToken[abc]"))
        self.assertTrue(is_expo_token("ExpoPushToken[abc]"))
        self.assertFalse(is_expo_token(FCM_TOKEN))

    def test_expo_token_validity(self):
        self.assertTrue(is_valid_expo_token("ExponentPushToken[abc]"))
        self.assertFalse(is_valid_expo_token("ExponentPushToken[]"))
        self.assertFalse(is_valid_expo_token("ExponentPushToken[abc"))

    def test_mask_token(self):
        self.assertEqual(mask_token("short"), "short")
        self.assertTrue(mask_token("x" * 50).endswith("..."))

    def test_chunk_messages(self):
        chunks = chunk_messages(list(range(250)), 100)
        self.assertEqual([len(c) for c in chunks], [100, 100, 50])


class TestGateway(unittest.IsolatedAsyncioTestCase):

    async def test_routes_by_token_type(self):
        expo, fcm = RecordingChannel(), RecordingChannel()
        gateway = NotificationGateway(expo, fcm)

        result = await gateway.dispatch(["ExponentPushToken[a]", FCM_TOKEN], "t", "b")

        self.assertEqual(expo.calls, [["ExponentPushToken[a]"]])
        self.assertEqual(fcm.calls, [[FCM_TOKEN]])
        self.assertEqual(result.sent, 2)

    async def test_duplicates_sent_once(self):
        expo, fcm = RecordingChannel(), RecordingChannel()
        gateway = NotificationGateway(expo, fcm)

        await gateway.dispatch(["ExponentPushToken[a]"] * 3, "t", "b")

        self.assertEqual(expo.calls, [["ExponentPushToken[a]"]])
        self.assertEqual(fcm.calls, [])

    async def test_empty_recipients(self):
        expo, fcm = RecordingChannel(), RecordingChannel()
        result = await NotificationGateway(expo, fcm).dispatch([], "t", "b")
        self.assertEqual(result.as_dict(), {"sent": 0, "errors": 0, "invalid_recipients": []})
        self.assertEqual(expo.calls, [])

    async def test_channel_exception_counted_not_raised(self):
        expo = RecordingChannel(raises=RuntimeError("down"))
        fcm = RecordingChannel()
        gateway = NotificationGateway(expo, fcm)

        result = await gateway.dispatch(["ExponentPushToken[a]", "ExponentPushToken[b]", FCM_TOKEN], "t", "b")

        self.assertEqual(result.errors, 2)
        self.assertEqual(result.sent, 1)


class TestExpoChannel(unittest.IsolatedAsyncioTestCase):

    async def test_chunks_of_100(self):
        posted = []
        channel = ExpoPushChannel(PUSH_URL, transport=httpx.MockTransport(ok_tickets_handler(posted)))

        result = await channel.send(expo_tokens(150), "t", "b", {"type": "ship_detected"})

        self.assertEqual([len(c) for c in posted], [100, 50])
        self.assertEqual(result.sent, 150)
        self.assertEqual(result.errors, 0)
        message = posted[0][0]
        self.assertEqual(message["title"], "t")
        self.assertEqual(message["data"], {"type": "ship_detected"})
        self.assertEqual(message["priority"], "high")
        self.assertEqual(message["sound"], "default")

    async def test_device_not_registered_marked_invalid(self):
        def handler(request):
            return httpx.Response(200, json={"data": [
                {"status": "ok", "id": "1"},
                {"status": "error", "message": "not registered", "details": {"error": "DeviceNotRegistered"}},
                {"status": "error", "message": "too big", "details": {"error": "MessageTooBig"}},
            ]})

        channel = ExpoPushChannel(PUSH_URL, transport=httpx.MockTransport(handler))
        tokens = expo_tokens(3)

        result = await channel.send(tokens, "t", "b")

        self.assertEqual(result.sent, 1)
        self.assertEqual(result.errors, 2)
        self.assertEqual(result.invalid_recipients, [tokens[1]])

    async def test_failed_chunk_counts_every_message(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(500)
            chunk = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"status": "ok"}] * len(chunk)})

        channel = ExpoPushChannel(PUSH_URL, transport=httpx.MockTransport(handler))

        result = await channel.send(expo_tokens(150), "t", "b")

        self.assertEqual(result.errors, 100)
        self.assertEqual(result.sent, 50)

    async def test_malformed_token_not_sent(self):
        posted = []
        channel = ExpoPushChannel(PUSH_URL, transport=httpx.MockTransport(ok_tickets_handler(posted)))

        result = await channel.send(["ExponentPushToken[]", "ExponentPushToken[ok]"], "t", "b")

        self.assertEqual(len(posted[0]), 1)
        self.assertEqual(result.sent, 1)
        self.assertEqual(result.errors, 1)
        self.assertEqual(result.invalid_recipients, ["ExponentPushToken[]"])

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        channel = ExpoPushChannel(PUSH_URL, transport=httpx.MockTransport(handler))

        result = await channel.send(expo_tokens(2), "t", "b")

        self.assertEqual(result.errors, 2)
        self.assertEqual(result.sent, 0)


class TestFcmChannel(unittest.IsolatedAsyncioTestCase):

    async def test_unavailable_counts_errors(self):
        result = await FcmPushChannel(available=False).send([FCM_TOKEN, FCM_TOKEN + "2"], "t", "b")
        self.assertEqual(result.errors, 2)
        self.assertEqual(result.sent, 0)

    async def test_sends_each_token(self):
        channel = FcmPushChannel(available=True)
        with patch.object(push_channels.messaging, "send", return_value="msg-1") as send:
            result = await channel.send([FCM_TOKEN, FCM_TOKEN + "2"], "t", "b", {"distance": 850})

        self.assertEqual(result.sent, 2)
        self.assertEqual(send.call_count, 2)
        message = send.call_args[0][0]
        self.assertEqual(message.data, {"distance": "850"})

    async def test_unregistered_token_invalid(self):
        channel = FcmPushChannel(available=True)
        with patch.object(push_channels.messaging, "send", side_effect=messaging.UnregisteredError("gone")):
            result = await channel.send([FCM_TOKEN], "t", "b")

        self.assertEqual(result.errors, 1)
        self.assertEqual(result.invalid_recipients, [FCM_TOKEN])

    async def test_other_error_not_invalid(self):
        channel = FcmPushChannel(available=True)
        with patch.object(push_channels.messaging, "send", side_effect=ValueError("bad message")):
            result = await channel.send([FCM_TOKEN], "t", "b")

        self.assertEqual(result.errors, 1)
        self.assertEqual(result.invalid_recipients, [])

    def test_data_values_stringified(self):
        message = FcmPushChannel(available=True)._build_message(
            FCM_TOKEN, "t", "b", {"type": "ship_detected", "ship": {"name": "ALPHA"}, "zone": None}
        )
        self.assertEqual(message.data["type"], "ship_detected")
        self.assertEqual(json.loads(message.data["ship"]), {"name": "ALPHA"})
        self.assertEqual(message.data["zone"], "null")


class TestMessages(unittest.IsolatedAsyncioTestCase):

    def test_ship_detected_message(self):
        ship = ShipRecord(identity="T1", name="ALPHA", lat=48.86, lon=2.22, distance=1200,
                          mmsi="226000001", speed=6.2)

        title, body, data = build_ship_detected_message(ship, "zone2")

        self.assertEqual(title, SHIP_DETECTED_TITLE)
        self.assertEqual(body, "ALPHA est à 1.2km de votre position")
        self.assertEqual(data["type"], "ship_detected")
        self.assertEqual(data["zone"], "zone2")
        self.assertEqual(data["distance"], 1200)
        self.assertEqual(data["ship"]["mmsi"], "226000001")
        self.assertEqual(data["ship"]["speed"], 6.2)
        self.assertIn("timestamp", data)

    def test_nameless_ship(self):
        ship = ShipRecord(identity="T1", name="", lat=48.86, lon=2.22, distance=2000)
        _, body, _ = build_ship_detected_message(ship)
        self.assertTrue(body.startswith(UNKNOWN_SHIP_NAME))

    async def test_send_ship_detected(self):
        expo = RecordingChannel()
        gateway = NotificationGateway(expo, RecordingChannel())
        ship = ShipRecord(identity="T1", name="ALPHA", lat=48.86, lon=2.22, distance=1200)

        result = await send_ship_detected_notification(gateway, ["ExponentPushToken[a]"], ship, "zone2")

        self.assertEqual(result.sent, 1)

    async def test_registration_confirmation(self):
        sent = []

        class Capture(RecordingChannel):
            async def send(self, tokens, title, body, data=None):
                sent.append((title, body, data))
                return DispatchResult(sent=len(tokens))

        gateway = NotificationGateway(Capture(), RecordingChannel())

        await send_registration_confirmation(gateway, "ExponentPushToken[a]", 3000)

        title, body, data = sent[0]
        self.assertEqual(title, REGISTRATION_TITLE)
        self.assertIn("3.0 km", body)
        self.assertEqual(data, {"type": "registration_confirmation"})


if __name__ == '__main__':
    print("Running TrackShip Notification Tests...")
    print("=" * 70)

    logger.remove()
    logger.add(sys.stderr, level="CRITICAL")

    unittest.main(verbosity=2)
