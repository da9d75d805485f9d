"""Service configuration read from the environment."""

import os

DB_PATH = os.getenv("DB_PATH", "/data/agricart.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Heartbeat clock
HEARTBEAT_INTERVAL_MS = int(os.getenv("HEARTBEAT_INTERVAL_MS", "15000"))
HEARTBEAT_MAX_RETRIES = int(os.getenv("HEARTBEAT_MAX_RETRIES", "3"))
HEARTBEAT_RETRY_DELAY_MS = int(os.getenv("HEARTBEAT_RETRY_DELAY_MS", "5000"))
QUEUE_SYNC_INTERVAL_MS = int(os.getenv("QUEUE_SYNC_INTERVAL_MS", "30000"))
HEALTH_CHECK_INTERVAL_MS = int(os.getenv("HEALTH_CHECK_INTERVAL_MS", "60000"))
HEALTH_STALE_AFTER_MS = int(os.getenv("HEALTH_STALE_AFTER_MS", "120000"))
HEARTBEAT_SOURCE = os.getenv("HEARTBEAT_SOURCE", "staff-admin-desktop")

# Local durable storage for the heartbeat
HEARTBEAT_QUEUE_PATH = os.getenv("HEARTBEAT_QUEUE_PATH", "/data/coop_time_queue.db")
HEARTBEAT_QUEUE_MAX = int(os.getenv("HEARTBEAT_QUEUE_MAX", "100"))
FALLBACK_CACHE_PATH = os.getenv("FALLBACK_CACHE_PATH", "/data/coop_time_fallback.json")
FALLBACK_EXPIRY_MS = int(os.getenv("FALLBACK_EXPIRY_MS", str(10 * 60 * 1000)))

# Optional Supabase/PostgREST endpoint for the shared time record
COOP_TIME_STORE_URL = os.getenv("COOP_TIME_STORE_URL", "")
COOP_TIME_STORE_KEY = os.getenv("COOP_TIME_STORE_KEY", "")
COOP_TIME_TIMEOUT_MS = int(os.getenv("COOP_TIME_TIMEOUT_MS", "5000"))

# Order events: "inprocess" dispatches directly, "rabbitmq" publishes to the broker
ORDER_EVENTS_TRANSPORT = os.getenv("ORDER_EVENTS_TRANSPORT", "inprocess").lower()

# Push notifications
FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
PUSH_ENABLED = os.getenv("PUSH_ENABLED", "false").lower() in ("1", "true", "yes")
