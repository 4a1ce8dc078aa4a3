from __future__ import annotations

# Desk client.
#
# A short-lived process used from a staff terminal:
# - connect to broker
# - publish one desk request (check-in or a station action)
# - wait for the correlated reply
# - print it and exit

import argparse
import json
import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, desk_requests, desk_responses

STATION_ACTIONS = ("start_next", "complete", "hold", "return", "skip", "note", "holds")


def send_request(*, mqtt_host: str, mqtt_port: int, namespace: str, message: dict[str, Any],
                 timeout: float = 5.0) -> dict[str, Any]:
    # Unique client id so several desks can run concurrently.
    client_id = f"desk-{message.get('type', 'req')}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = desk_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=desk_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=timeout,
        )
    finally:
        mqtt.stop()


def checkin_message(name: str, program: str, *, student_id: str | None = None,
                    email: str | None = None, staff: str | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": "checkin", "name": name, "program": program}
    for key, value in (("studentId", student_id), ("email", email), ("staff", staff)):
        if value:
            msg[key] = value
    return msg


def station_message(action: str, station: str, **fields: Any) -> dict[str, Any]:
    if action not in STATION_ACTIONS:
        raise ValueError(f"unknown station action: {action}")
    msg: dict[str, Any] = {"type": action, "station": station}
    msg.update({k: v for k, v in fields.items() if v is not None})
    return msg


def _print_reply(resp: dict[str, Any]) -> None:
    if resp.get("type") == "error":
        print(f"[desk] error ({resp.get('code')}): {resp.get('message')}")
    else:
        print(json.dumps(resp, indent=2))


def add_mqtt_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--mqtt-host", default="127.0.0.1")
    p.add_argument("--mqtt-port", type=int, default=1883)
    p.add_argument("--namespace", default=DEFAULT_NAMESPACE)


def main() -> None:
    parser = argparse.ArgumentParser(description="Front desk client (MQTT)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_in = sub.add_parser("checkin", help="check a student in")
    add_mqtt_args(p_in)
    p_in.add_argument("--name", required=True)
    p_in.add_argument("--program", required=True)
    p_in.add_argument("--student-id")
    p_in.add_argument("--email")
    p_in.add_argument("--staff")

    p_st = sub.add_parser("station", help="run a station action")
    add_mqtt_args(p_st)
    p_st.add_argument("action", choices=STATION_ACTIONS)
    p_st.add_argument("--station", required=True)
    p_st.add_argument("--ticket")
    p_st.add_argument("--staff")
    p_st.add_argument("--note")
    p_st.add_argument("--reason")
    p_st.add_argument("--text")

    args = parser.parse_args()

    if args.cmd == "checkin":
        message = checkin_message(
            args.name, args.program, student_id=args.student_id, email=args.email, staff=args.staff
        )
    else:
        message = station_message(
            args.action,
            args.station,
            ticket=args.ticket,
            staff=args.staff,
            note=args.note,
            reason=args.reason,
            text=args.text,
        )

    resp = send_request(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=message,
    )
    _print_reply(resp)


if __name__ == "__main__":
    main()
