import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from api.middleware import RequestIDMiddleware, get_client_ip
from api.middleware.logging import _decode_body, mask_fields
from core.logging_config import redact_secrets


def test_mask_fields_nested():
    masked = mask_fields({"order": {"signature": "abc", "amount": 10}, "items": [{"token": "t"}]})
    assert masked == {"order": {"signature": "***", "amount": 10}, "items": [{"token": "***"}]}


def test_decode_body_by_content_type():
    assert _decode_body(b'{"server_key": "k", "a": 1}', "application/json") == {"server_key": "***", "a": 1}
    assert _decode_body(b'{"a": ', "application/json") == '{"a": '
    assert _decode_body(b"token=x&ref=1", "application/x-www-form-urlencoded") == {"token": "***", "ref": "1"}
    assert _decode_body(b"--b", "multipart/form-data; boundary=b") == {"multipart": True}


def test_redact_secrets_processor():
    event = redact_secrets(None, "info", {"event": "x", "Authorization": "Bearer y", "headers": {"x-admin-token": "z"}})
    assert event["Authorization"] == "***"
    assert event["headers"] == {"x-admin-token": "***"}


@pytest.fixture
def echo_app():
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/echo")
    async def echo():
        return {"ip": get_client_ip()}

    return app


@pytest.mark.asyncio
async def test_request_id_passthrough_and_sanitizing(echo_app):
    async with AsyncClient(transport=ASGITransport(app=echo_app), base_url="http://test") as client:
        kept = await client.get("/echo", headers={"X-Request-ID": "abc-123", "X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert kept.headers["X-Request-ID"] == "abc-123"
        assert kept.json() == {"ip": "203.0.113.9"}

        replaced = await client.get("/echo", headers={"X-Request-ID": "bad id with spaces"})
        assert replaced.headers["X-Request-ID"] != "bad id with spaces"
        assert len(replaced.headers["X-Request-ID"]) == 36
