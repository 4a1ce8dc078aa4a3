import asyncio

from enrolment_queue.events import Event
from enrolment_queue.manager import EnrolmentQueue
from enrolment_queue.websocket import ListenerHub


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, message):
        self.sent.append(message)


def test_broadcast_task_is_tracked_until_done():
    hub = ListenerHub(EnrolmentQueue())
    ws = FakeSocket()
    hub.active_connections.add(ws)

    async def run():
        hub._loop = asyncio.get_running_loop()
        hub.on_event(Event("state:update", {"x": 1}))
        assert len(hub._tasks) == 1
        await asyncio.gather(*list(hub._tasks))
        await asyncio.sleep(0)

    asyncio.run(run())
    assert ws.sent == [{"event": "state:update", "data": {"x": 1}}]
    assert hub._tasks == set()


def test_audit_events_are_not_forwarded():
    hub = ListenerHub(EnrolmentQueue())
    ws = FakeSocket()
    hub.active_connections.add(ws)

    async def run():
        hub._loop = asyncio.get_running_loop()
        hub.on_event(Event("audit:append", {}))
        assert hub._tasks == set()

    asyncio.run(run())
    assert ws.sent == []
