"""
Batch trigger service for the review embedding / rollup pipeline.
Each POST endpoint runs one idempotent unit of work and returns its counts.
"""

import hmac
import os
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
import uvicorn

from src.utils.constants import API_HOST, API_PORT
from src.utils.exceptions import AuthenticationError, ConfigurationError, PipelineError, StorageError
from src.utils.logger import get_logger
from src.processing.models.review_kinds import REVIEW_KINDS, COURSE, COMPANY
from src.processing.pipeline.services import PipelineServices
from src.processing.pipeline.stats import read_rollup_stats

logger = get_logger("batch api")

app = FastAPI(
    title="Review Rollup Pipeline",
    description="Authenticated triggers for review embeddings, rollups and full rebuilds",
    version="1.0.0"
)


@lru_cache(maxsize=1)
def get_services():
    return PipelineServices.from_env()


def verify_batch_token(x_batch_token: Optional[str] = Header(None)):
    expected = os.getenv("BATCH_TOKEN")
    if not expected:
        raise ConfigurationError("BATCH_TOKEN is not set")
    if not hmac.compare_digest((x_batch_token or "").encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("unauthorized")


def _error(status_code, message, **extra):
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message, **extra})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: bad batch token")
    return _error(401, "unauthorized")


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"{request.url.path} failed on {exc.operation}: {exc}")
    return _error(500, str(exc), operation=exc.operation)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.error(f"{request.url.path} failed: {exc}")
    return _error(500, str(exc))


def _runner_for(services, x_batch_runner):
    return x_batch_runner or services.config.runner


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "kinds": sorted(REVIEW_KINDS)
    }


@app.post("/batch/full-rebuild/run", dependencies=[Depends(verify_batch_token)])
def run_full_rebuild(x_batch_runner: Optional[str] = Header(None),
                     services: PipelineServices = Depends(get_services)):
    runner = _runner_for(services, x_batch_runner)
    logger.info(f"Full rebuild triggered by {runner}")
    return services.rebuild_orchestrator().run(runner).to_dict()


@app.post("/batch/{kind}/embeddings/run", dependencies=[Depends(verify_batch_token)])
def run_embeddings(kind: str, x_batch_runner: Optional[str] = Header(None),
                   services: PipelineServices = Depends(get_services)):
    if kind not in REVIEW_KINDS:
        return _error(404, f"unknown review kind '{kind}'")

    runner = _runner_for(services, x_batch_runner)
    return services.pipeline(kind).embedding_runner.run(runner).to_dict()


@app.post("/batch/{kind}/rollups/run", dependencies=[Depends(verify_batch_token)])
def run_rollups(kind: str, x_batch_runner: Optional[str] = Header(None),
                services: PipelineServices = Depends(get_services)):
    if kind not in REVIEW_KINDS:
        return _error(404, f"unknown review kind '{kind}'")

    runner = _runner_for(services, x_batch_runner)
    return services.pipeline(kind).rollup_runner.run(runner).to_dict()


@app.get("/rollups/course/{subject_id}")
def get_course_rollup(subject_id: str, services: PipelineServices = Depends(get_services)):
    store = services.pipeline(COURSE.name).rollup_store
    return {"ok": True, **read_rollup_stats(store, (subject_id,))}


@app.get("/rollups/company/{university_id}/{faculty}/{company_id}")
def get_company_rollup(university_id: str, faculty: str, company_id: str,
                       services: PipelineServices = Depends(get_services)):
    store = services.pipeline(COMPANY.name).rollup_store
    return {"ok": True, **read_rollup_stats(store, (university_id, faculty, company_id))}


def serve(host=API_HOST, port=API_PORT):
    uvicorn.run(app, host=host, port=port)
