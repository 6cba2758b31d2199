"""
Retention worker process entry point.

Starts the three retention loops under a supervisor and serves the
liveness endpoint orchestration probes.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from account_reaper import AccountReaper
from background_tasks import BackgroundTaskManager
from config import config, ConfigError, HEALTH_PORT
from excess_action_trimmer import ExcessActionTrimmer
from models import SessionLocal
from observability import structured_logger, metrics
from stale_action_purger import StaleActionPurger
from store import ActionStore

app = FastAPI(title="Retention Worker", version="1.0.0")

backend_start_time = datetime.now(timezone.utc)

background_tasks: Optional[BackgroundTaskManager] = None


def build_background_tasks(store: ActionStore) -> BackgroundTaskManager:
    """Wire the retention loops to one shared store."""
    return BackgroundTaskManager(
        [
            AccountReaper(store),
            StaleActionPurger(store),
            ExcessActionTrimmer(store),
        ],
        restart_policy=config.restart_policy,
        initial_backoff=config.initial_backoff_seconds,
        max_backoff=config.max_backoff_seconds,
    )


@app.on_event("startup")
async def startup_event():
    global background_tasks

    is_valid, errors, warnings = config.validate()
    for warning in warnings:
        structured_logger.log_event("startup.config.warning", level="WARN", warning=warning)
    if not is_valid:
        structured_logger.log_event("startup.config.invalid", level="ERROR", errors=errors)
        raise ConfigError("; ".join(errors))

    structured_logger.log_event("startup.config", **config.summary())

    background_tasks = build_background_tasks(ActionStore(SessionLocal))
    await background_tasks.start()


@app.on_event("shutdown")
async def shutdown_event():
    if background_tasks is not None:
        await background_tasks.stop()


@app.get("/healthz")
async def health_check():
    """
    Liveness check - returns 200 if process is alive.
    A halted loop is reported in the body but does not fail the probe.
    """
    uptime_seconds = (datetime.now(timezone.utc) - backend_start_time).total_seconds()
    return {
        "status": "healthy",
        "uptime_seconds": int(uptime_seconds),
        "uptime_formatted": f"{int(uptime_seconds // 3600)}h {int((uptime_seconds % 3600) // 60)}m",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "loops": background_tasks.status() if background_tasks is not None else {},
    }


@app.get("/readyz")
async def readiness_check():
    """
    Readiness check - verifies the database is reachable.
    Returns 200 if ready, 503 if not ready.
    """
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1")).scalar()
        finally:
            db.close()
    except Exception as e:
        structured_logger.log_event("readyz.database_unreachable", level="WARN", error=str(e))
        return JSONResponse(status_code=503, content={"ready": False, "error": str(e)})
    return {"ready": True}


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus-compatible metrics endpoint"""
    if background_tasks is not None:
        for name, state in background_tasks.status().items():
            metrics.set_gauge("background_task_running", int(state["running"]), {"task": name})

    return Response(
        content=metrics.get_prometheus_text(),
        media_type="text/plain; version=0.0.4"
    )


def run():
    import uvicorn

    uvicorn.run(app, host=config.get_health_host(), port=HEALTH_PORT, log_level=config.get_log_level().lower())


if __name__ == "__main__":
    run()
