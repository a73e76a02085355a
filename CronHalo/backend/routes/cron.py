import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from CronHalo.engine.aggregator import elapsed_ms
from CronHalo.errors import AuthorizationError
from CronHalo.security.auth import RequestContext

logger = logging.getLogger(__name__)

router = APIRouter()

ORCHESTRATOR_PATH = "/api/cron/orchestrator"


def _authorize_and_run(request: Request, ctx: RequestContext):
    pipeline = request.app.state.auth_pipeline
    orchestrator = request.app.state.orchestrator
    pipeline.authorize(ctx)
    return orchestrator.run()


@router.get(ORCHESTRATOR_PATH)
async def run_orchestrator(request: Request):
    """
    Central entry point for all scheduled background tasks.

    Called by an external timer. Authorization failures of any kind return
    the same 401 body; task failures are reported inside a 200 response.
    """
    started = datetime.now(timezone.utc)
    try:
        body = await request.body()
        ctx = RequestContext(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            body=body.decode("utf-8", errors="replace") if body else "",
            peer=request.client.host if request.client else None,
        )
        # The pipeline may sleep and the run blocks on task HTTP calls
        report = await run_in_threadpool(_authorize_and_run, request, ctx)
        return report.to_response()

    except AuthorizationError:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    except Exception as e:
        duration = elapsed_ms(started, datetime.now(timezone.utc))
        logger.exception(f"[ORCHESTRATOR] Fatal error: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Orchestrator failed",
                "message": str(e) or "Internal server error",
                "duration": duration,
            },
        )
