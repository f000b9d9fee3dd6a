"""日志配置与 LoggingMiddleware 测试"""

import logging

import pytest
from chatrelay.gateway.middleware.logging_config import (
    parse_logger_levels,
    setup_logging,
)
from chatrelay.gateway.middleware.logging_mw import LoggingMiddleware


class TestLoggerLevels:
    def test_parse_pairs(self):
        assert parse_logger_levels("pika=INFO, chatrelay.gateway.services.relay=debug") == {
            "pika": logging.INFO,
            "chatrelay.gateway.services.relay": logging.DEBUG,
        }

    def test_parse_skips_malformed_entries(self):
        assert parse_logger_levels("pika,=DEBUG,aiosqlite=LOUD,,uvicorn=ERROR") == {
            "uvicorn": logging.ERROR,
        }

    def test_setup_applies_defaults_and_overrides(self, monkeypatch):
        monkeypatch.setenv("CHATRELAY_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv(
            "CHATRELAY_LOG_LEVELS", "pika=ERROR,chatrelay.gateway.services.relay=DEBUG"
        )

        setup_logging()

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("pika").level == logging.ERROR
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        assert logging.getLogger("chatrelay.gateway.services.relay").level == logging.DEBUG

    def test_unknown_root_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("CHATRELAY_LOG_LEVEL", "chatty")
        monkeypatch.delenv("CHATRELAY_LOG_LEVELS", raising=False)

        setup_logging()

        assert logging.getLogger().level == logging.INFO


async def _run(app, scope: dict) -> list[dict]:
    sent: list[dict] = []

    async def receive():
        return {"type": "websocket.connect"}

    async def send(message):
        sent.append(message)

    await LoggingMiddleware(app)(scope, receive, send)
    return sent


class TestLoggingMiddleware:
    async def test_websocket_accept_carries_request_id(self):
        async def ws_app(scope, receive, send):
            await send({"type": "websocket.accept", "headers": [(b"x-extra", b"1")]})
            await send({"type": "websocket.close", "code": 1008})

        sent = await _run(ws_app, {"type": "websocket", "path": "/ws"})

        headers = dict(sent[0]["headers"])
        assert headers[b"x-extra"] == b"1"
        assert len(headers[b"x-request-id"]) == 26
        assert sent[1] == {"type": "websocket.close", "code": 1008}

    async def test_http_response_carries_request_id(self):
        async def http_app(scope, receive, send):
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

        sent = await _run(http_app, {"type": "http", "method": "GET", "path": "/health"})

        assert sent[0]["status"] == 204
        assert len(dict(sent[0]["headers"])[b"x-request-id"]) == 26

    async def test_app_error_propagates(self):
        async def failing_app(scope, receive, send):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await _run(failing_app, {"type": "http", "method": "GET", "path": "/x"})

    async def test_lifespan_scope_passes_through(self):
        seen = []

        async def lifespan_app(scope, receive, send):
            seen.append(scope["type"])

        await _run(lifespan_app, {"type": "lifespan"})
        assert seen == ["lifespan"]
