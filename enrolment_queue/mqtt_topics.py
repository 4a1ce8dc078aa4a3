"""MQTT topic helpers.

We keep topic construction in one place so all components agree on naming.

Topic layout under a configurable namespace (default: `enrolment/v0`):

Request/response:
- `<ns>/desk/requests`
    Check-in and station actions from the desk CLI.
- `<ns>/desk/responses/<client_id>`

Streaming/broadcast:
- `<ns>/state/updates`
    Full board snapshot after every change (retained).
- `<ns>/students/updates`
    One student record whenever that student changes.

Several campuses can share a broker by changing the namespace
(e.g. `--namespace enrolment/north`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "enrolment/v0"


def desk_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/desk/requests"


def desk_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/desk/responses/{client_id}"


def state_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Board snapshots. Published retained, so new subscribers get the latest one."""
    return f"{namespace}/state/updates"


def student_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/students/updates"
