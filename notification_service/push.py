"""
Push notification senders.

FirebasePushSender delivers through Firebase Cloud Messaging with the
firebase-admin SDK; the app is initialised lazily from a service account file,
or from application default credentials when no file is configured.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, messaging

from common.config import FIREBASE_CREDENTIALS

logger = logging.getLogger(__name__)

ANDROID_CHANNEL_ID = "agricart_customer_channel"


class PushNotificationSender(Protocol):
    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        """Deliver one push message; returns the provider's message id."""
        ...


class FirebasePushSender:
    def __init__(self, credentials_path: str = FIREBASE_CREDENTIALS) -> None:
        self.credentials_path = credentials_path
        self._app: firebase_admin.App | None = None

    def _require_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            if self.credentials_path and os.path.exists(self.credentials_path):
                self._app = firebase_admin.initialize_app(credentials.Certificate(self.credentials_path))
            else:
                self._app = firebase_admin.initialize_app()
        return self._app

    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body),
            data={k: str(v) for k, v in data.items()},
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(channel_id=ANDROID_CHANNEL_ID),
            ),
            apns=messaging.APNSConfig(
                headers={"apns-priority": "10"},
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
            ),
        )
        return messaging.send(message, app=self._require_app())


class LoggingPushSender:
    """Sender for deployments without FCM: records the push in the log only."""

    def send(self, token: str, title: str, body: str, data: dict[str, str]) -> str:
        logger.info("Push (not delivered) to %s...: %s | %s", token[:8], title, data.get("type"))
        return f"log:{data.get('notificationId', '')}"
