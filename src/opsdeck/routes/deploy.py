"""Deploy log streaming route."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from opsdeck.auth.dependencies import require_session
from opsdeck.config import get_settings
from opsdeck.deploy.stream import StreamSession, stream_deploy_logs, validate_log_path
from opsdeck.errors import ConfigError
from opsdeck.routes.clients import get_runner
from opsdeck.runner.client import RunnerClient

router = APIRouter(prefix="/deploy", tags=["deploy"], dependencies=[Depends(require_session)])


@router.get("/logs/stream")
async def stream_logs(
    request: Request,
    log_file: str | None = Query(default=None, alias="logFile"),
    runner: RunnerClient = Depends(get_runner),  # noqa: B008
) -> StreamingResponse:
    settings = get_settings()
    path = validate_log_path(log_file, settings)
    if not runner.configured:
        raise ConfigError("Runner not configured: RUNNER_TOKEN environment variable is not set")
    session = StreamSession(log_file=path)
    return StreamingResponse(
        stream_deploy_logs(
            session,
            runner,
            is_disconnected=request.is_disconnected,
            settings=settings,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
