from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
import logging
import os

from core.config import LOG_LEVEL, SESSION_CLEANUP_INTERVAL_SEC, SESSION_CLEANUP_TTL_SEC
from interview_coach.api.coaching import router as coaching_router
from interview_coach.runtime import build_coaching_runtime
from interview_coach.system_metrics import get_metrics_snapshot

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=getattr(logging, LOG_LEVEL, logging.INFO),
)

app = FastAPI(title="Interview Coach – coaching engine")
logger = logging.getLogger("interview_coach.main")
app.state.coaching = None
_session_cleanup_task: asyncio.Task | None = None


def _get_allowed_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


_allowed_origins = _get_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


@app.on_event("startup")
async def startup_banner():
    global _session_cleanup_task
    if app.state.coaching is None:
        app.state.coaching = build_coaching_runtime()
    logger.info("[SYSTEM] CORS allow_origins=%s", _allowed_origins)
    logger.info("[SYSTEM] coaching store backend=%s", os.getenv("COACHING_STORE_BACKEND", "json"))
    logger.info(
        "[SYSTEM] session cleanup interval_sec=%s ttl_sec=%s",
        SESSION_CLEANUP_INTERVAL_SEC,
        SESSION_CLEANUP_TTL_SEC,
    )

    async def _session_cleanup_loop():
        while True:
            await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
            runtime = app.state.coaching
            if runtime is not None:
                runtime.cleanup_inactive(SESSION_CLEANUP_TTL_SEC)

    _session_cleanup_task = asyncio.create_task(_session_cleanup_loop())


@app.on_event("shutdown")
async def shutdown_handler():
    global _session_cleanup_task
    if _session_cleanup_task is not None:
        _session_cleanup_task.cancel()
        try:
            await _session_cleanup_task
        except asyncio.CancelledError:
            pass
        finally:
            _session_cleanup_task = None
    runtime = app.state.coaching
    if runtime is not None:
        await runtime.shutdown()
    logger.info("[SYSTEM] shutdown complete")


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "service": "interview-coach"}


@app.get("/api/system/metrics")
def system_metrics_route():
    runtime = app.state.coaching
    extra = {}
    if runtime is not None:
        extra["coaching_live_sessions"] = len(runtime.registry.active_session_ids())
        extra["coaching_pull_queue_size"] = runtime.delivery.pull_queue_count
        extra["coaching_preview_log_size"] = runtime.delivery.preview_log_count
    return get_metrics_snapshot(extra=extra)


app.include_router(coaching_router)
