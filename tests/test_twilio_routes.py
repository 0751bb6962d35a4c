from __future__ import annotations

from fastapi.testclient import TestClient


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self, error: Exception | None = None) -> None:
        self.requests: list[dict] = []
        self._error = error

    def create(self, *, to: str, from_: str, url: str):
        self.requests.append({"to": to, "from_": from_, "url": url})
        if self._error is not None:
            raise self._error
        return FakeTwilioCall("CA123")


class FakeTwilioClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = FakeTwilioCalls(error)


def test_outbound_call_creates_call(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post(
            "/outbound-call",
            json={"number": "+41791234567", "prompt": "be brief & kind", "first_message": "Hi there"},
        )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Call initiated", "callSid": "CA123"}
    assert fake.calls.requests == [
        {
            "to": "+41791234567",
            "from_": "+15005550006",
            "url": "https://testserver/outbound-call-twiml?prompt=be%20brief%20%26%20kind&first_message=Hi%20there",
        }
    ]


def test_outbound_call_requires_number(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post("/outbound-call", json={"prompt": "be brief"})

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Phone number is required"}
    assert fake.calls.requests == []


def test_outbound_call_provider_failure_returns_500(app):
    import api.twilio_routes as twilio_routes

    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: FakeTwilioClient(
        RuntimeError("Twilio unreachable")
    )

    with TestClient(app) as client:
        resp = client.post("/outbound-call", json={"number": "+41791234567"})

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Failed to initiate call"}


def test_twiml_connects_stream_with_parameters(client):
    resp = client.get(
        "/outbound-call-twiml",
        params={"prompt": 'say "hi" & wave', "first_message": "Hello <there>"},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    assert "<Connect><Stream url=\"wss://testserver/outbound-media-stream\">" in resp.text
    assert "<Parameter name=\"prompt\" value=\"say &quot;hi&quot; &amp; wave\" />" in resp.text
    assert "<Parameter name=\"first_message\" value=\"Hello &lt;there&gt;\" />" in resp.text


def test_twiml_accepts_post_without_parameters(client):
    resp = client.post("/outbound-call-twiml")

    assert resp.status_code == 200
    assert "<Parameter name=\"prompt\" value=\"\" />" in resp.text
    assert "<Parameter name=\"first_message\" value=\"\" />" in resp.text


def test_outbound_call_without_body_returns_400(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post("/outbound-call")

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Phone number is required"}
    assert fake.calls.requests == []


def test_outbound_call_accepts_form_body(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post("/outbound-call", data={"number": "+41791234567", "prompt": "be brief"})

    assert resp.status_code == 200
    assert resp.json()["callSid"] == "CA123"
    assert fake.calls.requests[0]["to"] == "+41791234567"
    assert fake.calls.requests[0]["url"].endswith("?prompt=be%20brief&first_message=")


def test_outbound_call_form_without_number_returns_400(app):
    import api.twilio_routes as twilio_routes

    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: FakeTwilioClient()

    with TestClient(app) as client:
        resp = client.post("/outbound-call", data={"prompt": "be brief"})

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Phone number is required"}


def test_outbound_call_accepts_numeric_number(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post("/outbound-call", json={"number": 41791234567})

    assert resp.status_code == 200
    assert fake.calls.requests[0]["to"] == "41791234567"


def test_outbound_call_rejects_unparseable_body(app):
    import api.twilio_routes as twilio_routes

    fake = FakeTwilioClient()
    app.dependency_overrides[twilio_routes.get_twilio_client] = lambda: fake

    with TestClient(app) as client:
        resp = client.post(
            "/outbound-call",
            content=b"number=+4179{",
            headers={"content-type": "text/plain"},
        )

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Request body must be JSON or form-encoded"}
    assert fake.calls.requests == []


def test_twiml_uses_configured_public_base_url(client, monkeypatch):
    from config.settings import get_settings

    monkeypatch.setenv("PUBLIC_BASE_URL", "https://bridge.example.com/")
    get_settings.cache_clear()
    try:
        resp = client.get("/outbound-call-twiml")
    finally:
        get_settings.cache_clear()

    assert "<Stream url=\"wss://bridge.example.com/outbound-media-stream\">" in resp.text
