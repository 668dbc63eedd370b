import pytest
from fastapi.testclient import TestClient

from dar.config import load_config
from dar.models import DispatchOutcome
from dar.server import create_app
from dar.service import build_service
from dar.sources.base import ChangePage

from fakes import ROOT, FakeFeed, audio_entry


ENV = {
    "DRIVE_FOLDER_ID": ROOT,
    "PROCESS_WEBHOOK_URL": "https://processor.example.com/hook",
    "APP_HOST_URL": "https://relay.example.com/",
    "DRIVE_VERIFY_TOKEN": "s3cret",
}


class _RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: list = []
        self.raw: list = []

    def dispatch(self, payload) -> DispatchOutcome:  # noqa: ANN001
        self.sent.append(payload)
        return DispatchOutcome(delivered=True, status=200, body="ok")

    def send_raw(self, body) -> DispatchOutcome:  # noqa: ANN001
        self.raw.append(body)
        return DispatchOutcome(delivered=True, status=202, body="queued")


def _client(env: dict | None = None, feed: FakeFeed | None = None):  # noqa: ANN202
    feed = feed or FakeFeed(
        start_cursor="c0",
        pages={"c0": ChangePage(entries=(audio_entry("a1"),), new_start_token="c1")},
        parents={"a1": (ROOT,)},
    )
    service = build_service(load_config(environ=ENV if env is None else env), feed=feed)
    if service.dispatcher is not None:
        dispatcher = _RecordingDispatcher()
        service.dispatcher = dispatcher
        service.harvester.dispatcher = dispatcher
    return TestClient(create_app(service)), service, feed


def test_health_and_landing() -> None:
    client, _, _ = _client()
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert "/drive/notify" in client.get("/").text


def test_register_creates_watch_and_resets_cursor() -> None:
    client, service, feed = _client()
    service.harvester.tracker.advance_to("old")

    r = client.post("/drive/register")

    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["page_token"] == "c0"
    assert body["notify_url"] == "https://relay.example.com/drive/notify"
    assert body["channel"]["id"].startswith("chan_")
    assert body["channel"]["resource_id"] == "res-1"
    assert body["channel"]["start_cursor"] == "c0"
    assert "token" not in body["channel"]
    assert service.harvester.tracker.current() == "c0"
    assert feed.watches[0][1] == "https://relay.example.com/drive/notify"
    assert feed.watches[0][3] == "s3cret"


def test_register_requires_public_base_url() -> None:
    env = {k: v for k, v in ENV.items() if k != "APP_HOST_URL"}
    client, _, feed = _client(env)

    r = client.post("/drive/register")

    assert r.status_code == 400
    assert "APP_HOST_URL" in r.json()["error"]
    assert feed.watches == []


def test_notify_rejects_bad_token() -> None:
    client, service, feed = _client()

    r = client.post("/drive/notify", headers={"X-Goog-Channel-Token": "wrong"})

    assert r.status_code == 403
    assert r.text == "bad token"
    assert feed.list_calls == []


def test_notify_acks_and_harvests_in_background() -> None:
    client, service, _ = _client()

    r = client.post("/drive/notify", headers={"X-Goog-Channel-Token": "s3cret", "X-Goog-Resource-State": "change"})

    # TestClient 会在返回前执行 background task
    assert r.status_code == 204
    assert [p.file_id for p in service.harvester.dispatcher.sent] == ["a1"]
    assert service.harvester.tracker.current() == "c1"


def test_notify_acks_even_when_harvest_fails() -> None:
    feed = FakeFeed(start_cursor="c0", failing_tokens={"c0"})
    client, service, _ = _client(feed=feed)

    r = client.post("/drive/notify", headers={"X-Goog-Channel-Token": "s3cret"})

    assert r.status_code == 204
    assert service.harvester.tracker.current() == "c0"


def test_manual_harvest_reports_outcome() -> None:
    client, _, _ = _client()

    r = client.post("/test/drive-notify")

    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["ran"] is True
    assert body["report"]["dispatch_successes"] == 1
    assert body["report"]["cursor_after"] == "c1"


def test_manual_harvest_surfaces_failure() -> None:
    feed = FakeFeed(start_cursor="c0", failing_tokens={"c0"})
    client, _, _ = _client(feed=feed)

    r = client.post("/test/drive-notify")

    assert r.status_code == 500
    assert r.json()["ok"] is False
    assert "TransientRemoteError" in r.json()["error"]


def test_manual_harvest_without_configuration() -> None:
    client, _, _ = _client(env={})

    r = client.post("/test/drive-notify")

    assert r.status_code == 400
    assert "DRIVE_FOLDER_ID" in r.json()["error"]


@pytest.mark.parametrize("payload", [None, {}])
def test_test_process_sends_default_payload(payload) -> None:  # noqa: ANN001
    client, service, _ = _client()

    r = client.post("/test/process") if payload is None else client.post("/test/process", json=payload)

    assert r.status_code == 200
    body = r.json()
    assert body["downstream"] == 202
    assert body["echoed"]["fileId"] == "TEST_FILE_ID"
    assert service.dispatcher.raw[0]["callType"] == "outgoing"


def test_test_process_echoes_custom_payload() -> None:
    client, service, _ = _client()

    r = client.post("/test/process", json={"fileId": "X"})

    assert r.json()["echoed"] == {"fileId": "X"}
    assert service.dispatcher.raw == [{"fileId": "X"}]


def test_test_process_requires_endpoint() -> None:
    client, _, _ = _client(env={"DRIVE_FOLDER_ID": ROOT})

    r = client.post("/test/process")

    assert r.status_code == 400
    assert r.json()["ok"] is False


def test_test_process_reports_unusable_endpoint() -> None:
    env = {**ENV, "PROCESS_WEBHOOK_URL": "processor.internal/hook"}
    service = build_service(load_config(environ=env), feed=FakeFeed())
    client = TestClient(create_app(service))

    r = client.post("/test/process")

    assert r.status_code == 500
    assert r.json()["ok"] is False
    assert "ValueError" in r.json()["error"]
