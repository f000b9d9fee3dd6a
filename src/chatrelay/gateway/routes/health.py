"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite、消息代理、指纹缓存连通性。
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


async def _probe(name: str, component) -> str:
    try:
        if await component.ping():
            return "ok"
        return "unreachable"
    except Exception as e:
        log.warning("readiness_probe_failed", component=name, error=str(e))
        return f"error: {e}"


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. broker: 消息代理连通性
    3. cache: 指纹缓存连通性
    """
    checks = {}

    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"

    checks["broker"] = await _probe("broker", request.app.state.broker)
    checks["cache"] = await _probe("cache", request.app.state.cache)

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
