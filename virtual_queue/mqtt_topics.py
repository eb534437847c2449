"""MQTT topic helpers.

We keep topic construction in one place so the service, clients and
observers agree on naming.

Topic layout under a configurable namespace (default: `vqueue/v1`):

Request/response:
- `<ns>/queue/requests`
    Every queue operation and query goes here.
- `<ns>/queue/responses/<client_id>`
    Each client listens on its own reply topic (`reply_to` in the request).

Streaming/broadcast:
- `<ns>/businesses/<business_id>/queue`
    Snapshot of active + pending entries after every lifecycle event.

Several deployments can share one broker by using different namespaces.
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "vqueue/v1"


def queue_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/requests"


def queue_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/queue/responses/{client_id}"


def business_updates(business_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Live snapshots for one business. Observers subscribe here."""
    return f"{namespace}/businesses/{business_id}/queue"


def all_business_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Wildcard subscription covering every business."""
    return f"{namespace}/businesses/+/queue"
