from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Mapping, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from omegaconf import DictConfig, OmegaConf
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from .compiler import LatexCompiler
from .configuration import (
    AUTH_TOKEN_KEY,
    PROVIDER_KEYS,
    get_credential,
    make_runtime_config,
    validate_environment,
)
from .errors import CompilationError, StorageError
from .generator import TextGenerator
from .job_manager import JobManager
from .job_store import JobStore
from .middleware import RateLimitMiddleware, RateLimiter, has_bearer_token
from .models import GenerateRequest, GenerateResponse, JobView, RenderResponse
from .storage import create_storage_backend
from .utils import setup_logging

logger = logging.getLogger(__name__)


def build_job_manager(config: DictConfig, environ: Optional[Mapping[str, str]] = None) -> JobManager:
    """
    Wire the production adapters from configuration.

    Raises:
        ConfigurationError: For an unsupported provider or storage backend,
            or missing storage credentials
    """
    generation = config.generation
    generator = TextGenerator(
        generation.provider,
        generation.model,
        api_key=get_credential(PROVIDER_KEYS.get(generation.provider, ""), environ),
        premium_model=generation.premium_model,
        prompt_options=OmegaConf.to_container(generation.prompt),  # type: ignore[arg-type]
        document_options=OmegaConf.to_container(generation.document),  # type: ignore[arg-type]
    )
    compiler = LatexCompiler(command=config.compiler.command, reference_pass=config.compiler.reference_pass)
    storage = create_storage_backend(config, environ)

    jobs = config.jobs
    return JobManager(
        store=JobStore(),
        generator=generator,
        compiler=compiler,
        storage=storage,
        work_root=Path(jobs.work_root) if jobs.work_root else None,
        job_timeout=jobs.timeout_seconds,
        sweep_interval=jobs.sweep_interval_seconds,
        eviction_delay=jobs.eviction_delay_seconds,
    )


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def create_app(
    config: Optional[DictConfig] = None,
    manager: Optional[JobManager] = None,
    auth_token: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FastAPI:
    """
    Build the API application.

    Without an injected ``manager`` the environment is validated and the
    production adapters are built, so missing credentials stop the process
    before it serves traffic.

    Raises:
        ConfigurationError: If required configuration is missing
    """
    config = config if config is not None else make_runtime_config(environ=environ)
    setup_logging("satire_paper_backend", config.logging.level)

    if manager is None:
        validate_environment(config, environ)
        manager = build_job_manager(config, environ)
    if auth_token is None:
        auth_token = get_credential(AUTH_TOKEN_KEY, environ)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager.start()
        logger.info("Job expiry sweep started")
        yield
        await manager.stop()

    app = FastAPI(title="Satire Paper API", version="0.1.0", lifespan=lifespan)
    app.state.job_manager = manager

    limits = config.rate_limit
    app.add_middleware(
        RateLimitMiddleware,
        limiters=[
            RateLimiter(
                limits.short_max_requests,
                limits.short_window_seconds,
                message="Too many requests from this IP, please try again after 1 minute",
            ),
            RateLimiter(
                limits.long_max_requests,
                limits.long_window_seconds,
                message="Too many requests from this IP, please try again after 24 hours",
            ),
        ],
        paths={"/api/generate"},
        trusted_hops=limits.trusted_proxy_hops,
    )

    site_url = config.server.site_url
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[site_url] if site_url else ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok", "message": "Generation API is running!"}

    @app.get("/api/generate")
    def generate_requires_post() -> None:
        raise HTTPException(status_code=400, detail="You must POST to /api/generate")

    @app.post("/api/generate", response_model=GenerateResponse)
    async def create_job(request: Request, manager: JobManager = Depends(get_job_manager)) -> GenerateResponse:
        job_id = manager.store.create()
        logger.info(f"Received generation request with jobId: {job_id}")

        try:
            body = GenerateRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as exc:
            logger.info(f"Invalid request body for jobId: {job_id}")
            manager.discard(job_id)
            raise HTTPException(status_code=400, detail="Invalid request") from exc

        if not body.topic.strip():
            manager.discard(job_id)
            raise HTTPException(status_code=400, detail="Missing topic")

        manager.submit(job_id, body.topic, body.is_premium)
        return GenerateResponse(job_id=job_id)

    @app.get("/api/status/{job_id}", response_model=JobView, response_model_exclude_none=True)
    async def job_status(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobView:
        record = manager.store.touch(job_id)
        if record is None:
            logger.info(f"Job not found for jobId: {job_id}")
            raise HTTPException(status_code=404, detail="Job not found")

        if record.status.is_terminal:
            # Evict after a grace period so the client receives this response first
            manager.schedule_eviction(job_id)
        return record.to_view()

    @app.post("/api/latex", response_model=RenderResponse)
    async def render_latex(request: Request, manager: JobManager = Depends(get_job_manager)) -> RenderResponse:
        if not has_bearer_token(request, auth_token):
            raise HTTPException(status_code=401, detail="Unauthorized")

        source = (await request.body()).decode("utf-8", errors="replace")
        if not source.strip():
            raise HTTPException(status_code=400, detail="No LaTeX content provided.")

        try:
            result = await manager.render_document(source)
        except CompilationError as exc:
            raise HTTPException(status_code=500, detail="Failed to compile LaTeX document.") from exc
        except StorageError as exc:
            raise HTTPException(status_code=500, detail="Failed to upload PDF.") from exc

        return RenderResponse(message="PDF successfully generated and uploaded.", title=result.title, url=result.url)

    return app


def run() -> None:
    """Console entry point: validate configuration and serve with uvicorn."""
    config = make_runtime_config()
    app = create_app(config)
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run()
