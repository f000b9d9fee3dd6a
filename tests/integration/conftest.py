"""集成测试共享 fixture -- 内存后端 + 临时数据库"""

from pathlib import Path

import pytest


@pytest.fixture
def app_env(tmp_path: Path, monkeypatch, jwt_secret):
    """测试环境变量：内存 broker / 缓存 + 临时 SQLite"""
    monkeypatch.setenv("CHATRELAY_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("CHATRELAY_BROKER_MODE", "memory")
    monkeypatch.setenv("CHATRELAY_CACHE_MODE", "memory")
    monkeypatch.setenv("CHATRELAY_JWT_SECRET", jwt_secret)
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


@pytest.fixture
def app(app_env):
    from chatrelay.gateway.main import create_app

    return create_app()
