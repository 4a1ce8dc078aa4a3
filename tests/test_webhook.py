import requests

from enrolment_queue import webhook
from enrolment_queue.events import Event
from enrolment_queue.manager import EnrolmentQueue
from enrolment_queue.webhook import WebhookNotifier


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400


def test_build_payload_maps_events_to_actions():
    n = WebhookNotifier("http://hook.test", token="secret")
    body = n.build_payload(
        {"event": "checkin", "ticket": "A1001", "ts": "t", "stepKey": "registration",
         "meta": {"name": "Jane", "program": "BA"}}
    )
    assert body == {"token": "secret", "action": "checkin", "ticket": "A1001", "ts": "t", "name": "Jane", "program": "BA"}

    assert n.build_payload({"event": "start", "ticket": "A1", "ts": "t", "stepKey": "marketing"})["action"] == "dept_in"
    assert n.build_payload({"event": "complete", "ticket": "A1", "ts": "t", "stepKey": "marketing"})["action"] == "dept_out"
    assert n.build_payload({"event": "skip", "ticket": "A1", "ts": "t", "stepKey": "marketing"})["action"] == "dept_out"
    assert n.build_payload({"event": "note_add", "ticket": "A1"}) is None


def test_post_failures_are_swallowed(monkeypatch, caplog):
    n = WebhookNotifier("http://hook.test")

    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(webhook.requests, "post", refuse)
    assert n.post({"action": "checkin"}) is False

    monkeypatch.setattr(webhook.requests, "post", lambda *a, **k: FakeResponse(500, "boom"))
    assert n.post({"action": "checkin"}) is False
    assert "HTTP 500" in caplog.text


def test_post_sends_json_with_timeout(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse()

    monkeypatch.setattr(webhook.requests, "post", fake_post)
    n = WebhookNotifier("http://hook.test", timeout=2.5)
    assert n.post({"action": "dept_in", "ticket": "A1"}) is True
    assert calls == [("http://hook.test", {"action": "dept_in", "ticket": "A1"}, 2.5)]


def test_notifier_never_breaks_queue_operations(monkeypatch):
    sent = []
    n = WebhookNotifier("http://hook.test")
    monkeypatch.setattr(n, "post", lambda body: sent.append(body) or False)

    class InlineThread:
        def __init__(self, target, args, daemon):
            self.target, self.args = target, args

        def start(self):
            self.target(*self.args)

    monkeypatch.setattr(webhook.threading, "Thread", InlineThread)

    q = EnrolmentQueue()
    n.attach(q.bus)
    t = q.checkin("Jane", "BA")["ticket"]
    q.start_next("registration")
    q.add_note("registration", "hi")

    assert [b["action"] for b in sent] == ["checkin", "dept_in"]
    assert sent[0]["ticket"] == t


def test_ignores_non_audit_events(monkeypatch):
    n = WebhookNotifier("http://hook.test")

    def fail(body):
        raise AssertionError("posted")

    monkeypatch.setattr(n, "post", fail)
    n.on_event(Event("state:update", {"event": "checkin"}))
