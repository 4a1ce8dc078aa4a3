"""Front-desk enrolment queue.

Students check in once and then walk a fixed pipeline of stations
(registration, marketing, class registration, tuition payment, student ID).
Staff at each station start, complete, hold, return, skip and annotate
tickets; every change is written to an audit log and pushed to displays.

Transports:
- HTTP API + WebSocket push (FastAPI), see `server.py`
- optional MQTT bridge, Tk display board and desk CLI (paho-mqtt)
"""
