from __future__ import annotations

# Public display board (Tkinter).
#
# Shows, per station, the ticket being served, the waiting tickets and the
# number on hold. Fed by the retained board snapshot on the MQTT state topic,
# so the board is filled as soon as it connects.
#
# Architecture:
# - MQTT callbacks run on a background thread managed by paho-mqtt.
# - Tkinter must be updated from the main UI thread.
# - We therefore push incoming snapshots into a Queue and poll it via
#   `root.after(...)`.

import argparse
import queue
import time
import tkinter as tk
from tkinter import ttk
from typing import Any, cast

from .mqtt_client import MqttClient
from .mqtt_topics import DEFAULT_NAMESPACE, state_updates

MAX_WAITING_SHOWN = 8


def board_rows(snapshot: dict[str, Any]) -> list[tuple[str, str, str, str]]:
    """Turn a board snapshot into display rows (station, serving, waiting, held)."""
    stations = snapshot.get("stations")
    queues = snapshot.get("queues") or {}
    serving = snapshot.get("currentServing") or {}
    holds = snapshot.get("holds") or {}
    if not isinstance(stations, list):
        return []

    rows: list[tuple[str, str, str, str]] = []
    for st in stations:
        if not isinstance(st, dict):
            continue
        key = st.get("key")
        waiting = queues.get(key) or []
        shown = ", ".join(str(t) for t in waiting[:MAX_WAITING_SHOWN])
        if len(waiting) > MAX_WAITING_SHOWN:
            shown += f" (+{len(waiting) - MAX_WAITING_SHOWN})"
        rows.append((str(st.get("label", key)), str(serving.get(key) or "-"), shown or "-", str(holds.get(key, 0))))
    return rows


class DisplayBoard:
    def __init__(self, *, mqtt_host: str, mqtt_port: int, namespace: str, refresh_ms: int = 250) -> None:
        self.mqtt_host = mqtt_host
        self.mqtt_port = mqtt_port
        self.namespace = namespace
        self.refresh_ms = refresh_ms

        self.root = tk.Tk()
        self.root.title("Enrolment Queue")
        self.root.geometry("900x360")

        self.info_var = tk.StringVar(value="Connecting...")
        ttk.Label(self.root, textvariable=self.info_var).pack(fill=cast(Any, tk.X), padx=10, pady=(10, 5))

        cols = ("station", "serving", "waiting", "held")
        self.tree = ttk.Treeview(self.root, columns=cols, show="headings", height=8)
        self.tree.heading("station", text="Station")
        self.tree.heading("serving", text="Now serving")
        self.tree.heading("waiting", text="Waiting")
        self.tree.heading("held", text="On hold")

        self.tree.column("station", width=170, anchor=cast(Any, tk.W))
        self.tree.column("serving", width=120, anchor=cast(Any, tk.CENTER))
        self.tree.column("waiting", width=480, anchor=cast(Any, tk.W))
        self.tree.column("held", width=80, anchor=cast(Any, tk.E))
        self.tree.pack(fill=cast(Any, tk.BOTH), expand=True, padx=10, pady=10)

        # Incoming snapshots from MQTT thread
        self._inbox: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=5)
        self._mqtt = MqttClient(client_id=f"display-{int(time.time())}", host=mqtt_host, port=mqtt_port)

        self.root.protocol("WM_DELETE_WINDOW", self.close)

    def start(self) -> None:
        # If the broker isn't reachable, keep the window up and show the error.
        try:
            self._mqtt.start()
            self._mqtt.subscribe(state_updates(self.namespace))
            self._mqtt.add_handler(self._on_mqtt_message)
            self.info_var.set(f"Connected to MQTT {self.mqtt_host}:{self.mqtt_port} | waiting for updates...")
        except OSError as e:
            self.info_var.set(f"MQTT connection failed: {e}")

        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)
        self.root.mainloop()

    def close(self) -> None:
        try:
            self._mqtt.stop()
        finally:
            self.root.destroy()

    # -------------------- MQTT thread callback --------------------

    def _on_mqtt_message(self, topic: str, msg: dict[str, Any]) -> None:
        if msg.get("type") != "state_update":
            return
        try:
            self._inbox.put_nowait(msg)
        except queue.Full:
            # UI is behind; only the newest snapshot matters.
            pass

    # -------------------- UI thread polling --------------------

    def _drain_inbox(self) -> None:
        latest: dict[str, Any] | None = None
        while True:
            try:
                latest = self._inbox.get_nowait()
            except queue.Empty:
                break

        if latest is not None:
            self._render(latest)
            self.info_var.set(f"Connected to MQTT {self.mqtt_host}:{self.mqtt_port} | namespace={self.namespace}")

        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)

    def _render(self, snapshot: dict[str, Any]) -> None:
        for item in self.tree.get_children():
            self.tree.delete(item)
        for row in board_rows(snapshot):
            self.tree.insert("", cast(Any, tk.END), values=row)


def main() -> None:
    parser = argparse.ArgumentParser(description="Public display board (Tkinter + MQTT)")
    parser.add_argument("--mqtt-host", default="127.0.0.1")
    parser.add_argument("--mqtt-port", type=int, default=1883)
    parser.add_argument("--namespace", default=DEFAULT_NAMESPACE)
    parser.add_argument("--refresh-ms", type=int, default=250)
    args = parser.parse_args()

    DisplayBoard(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        refresh_ms=args.refresh_ms,
    ).start()


if __name__ == "__main__":
    main()
