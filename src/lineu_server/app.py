import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lineu_core.config.settings import Settings
from lineu_server.database import create_all_tables, create_session_maker, get_session
from lineu_server.router import router
from lineu_worker.agent.process import AgentRunner
from lineu_worker.issues import LinearIssueService
from lineu_worker.repo import RepoSync
from lineu_worker.worker import Worker

logger = logging.getLogger("lineu_server")


async def _load_routing(settings: Settings, issues: LinearIssueService) -> None:
    await issues.load_configured_routing(settings)
    if not settings.dry_run and not issues.routing:
        raise RuntimeError("Failed to load Linear teams. Cannot route issues.")


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    settings: Settings = app.state.settings
    settings.data_path.mkdir(parents=True, exist_ok=True)

    try:
        app.state.engine, app.state.db_session_maker = create_session_maker(settings.database_path)
        app.state.get_db_session = lambda read_only=False: get_session(app.state.db_session_maker, read_only)
        await create_all_tables(app.state.engine)
    except Exception as e:
        logger.warning(f"Failed to create database session: {e}")
        raise

    repo = RepoSync.from_settings(settings)
    if settings.repo_url:
        await repo.clone(settings.repo_url)
    if repo.path is None:
        raise RuntimeError("Either repo_path or repo_url is required")

    issues = LinearIssueService.from_settings(settings)
    await _load_routing(settings, issues)

    runner = AgentRunner.from_settings(settings)
    worker = Worker.from_settings(settings, app.state.db_session_maker, runner, issues, repo)
    if settings.fail_orphaned_on_start:
        await worker.fail_orphaned()

    scheduler = AsyncIOScheduler()
    worker.start(scheduler)
    scheduler.start()

    app.state.repo = repo
    app.state.issues = issues
    app.state.worker = worker
    app.state.scheduler = scheduler
    logger.info(f"Repo: {repo.path}")
    logger.info(f"Webhook: http://{settings.host}:{settings.port}/webhook")

    yield

    await worker.shutdown()
    scheduler.shutdown(wait=False)
    await issues.aclose()
    await app.state.engine.dispose()
    logger.info("Application shutdown completed")


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="lineu",
        description="Incident webhook to code analysis to Linear issue",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, e: HTTPException) -> JSONResponse:
        logger.error(f"HTTP {e.status_code}: {e.detail} - {request.method} {request.url}")
        return JSONResponse(
            status_code=e.status_code,
            content={"detail": e.detail},
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, e: ValidationError) -> JSONResponse:
        logger.error(f"Validation error on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": e.errors()},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, e: ValueError) -> JSONResponse:
        logger.error(f"ValueError on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=400,
            content={"detail": str(e)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, e: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.method} {request.url}:")
        logger.error(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error": str(e)},
        )

    app.include_router(router)

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        repo = getattr(request.app.state, "repo", None)
        return {"status": "ok", "repo": str(repo.path) if repo is not None and repo.path else None}

    return app
