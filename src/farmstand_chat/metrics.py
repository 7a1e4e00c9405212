"""Prometheus metrics for the chat core."""

from prometheus_client import CollectorRegistry, Counter, Gauge

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total HTTP requests", ["path"], registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total chat errors by code", ["error_code"], registry=CUSTOM_REGISTRY)
CONVERSATIONS_CREATED = Counter(
    "conversations_created_total", "Conversations created", registry=CUSTOM_REGISTRY
)
CREATE_RACES = Counter(
    "conversation_create_races_total",
    "Conversation inserts that lost a uniqueness race and re-read",
    registry=CUSTOM_REGISTRY,
)
MESSAGES_SENT = Counter("messages_sent_total", "Messages persisted", registry=CUSTOM_REGISTRY)
PREVIEW_UPDATE_FAILURES = Counter(
    "preview_update_failures_total",
    "Best-effort conversation preview updates that failed",
    registry=CUSTOM_REGISTRY,
)
ACTIVE_SUBSCRIPTIONS = Gauge(
    "active_subscriptions", "Open realtime subscriptions", registry=CUSTOM_REGISTRY
)
