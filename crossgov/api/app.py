"""
CrossGov HTTP API

FastAPI surface over GovernanceService, mounted under /api:

    GET  /api/proposal/{id}             snapshot, window, deadline, signing domain
    POST /api/compute-power             {"proposalId", "voter"} → {"power"}
    POST /api/vote                      signed vote → {"ok", "status", "stored"}
    POST /api/merkle/{id}               freeze → merkle artifact
    POST /api/multiproof/{id}           {"voters": [...]} (optional) → multiproof
    GET  /api/nextNonce/{id}/{voter}    Chain B nonce → {"nonce"}
    GET  /api/health

Large integers are decimal strings. Errors are {"error": message}.
"""

import time
from contextlib import asynccontextmanager

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from ..crypto.address import is_valid_address, to_checksum_address
from ..exceptions import (
    ArtifactNotFound,
    BadSignature,
    CrossGovError,
    FreezeConflict,
    UpstreamUnavailable,
    ValidationError,
)
from ..governance.types import parse_uint
from ..logger import get_logger

logger = get_logger(__name__)

API_VERSION = "1.0.0"

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (BadSignature, 400),
    (ArtifactNotFound, 404),
    (FreezeConflict, 409),
    (UpstreamUnavailable, 503),
)


def status_for(exc: Exception) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _service(request: Request):
    return request.app.state.service


router = APIRouter(prefix="/api")


@router.get("/health")
async def health(request: Request):
    service = _service(request)
    return {
        "ok": True,
        "version": API_VERSION,
        "chainB": {
            "chainId": service.domain.chain_id,
            "verifier": to_checksum_address(service.domain.verifying_contract),
        },
    }


@router.get("/proposal/{proposal_id}")
async def get_proposal(proposal_id: str, request: Request):
    return await _service(request).proposal_info(parse_uint(proposal_id, "proposalId"))


@router.post("/compute-power")
async def compute_power(request: Request, body: dict = Body(...)):
    if body.get("proposalId") in (None, "") or not body.get("voter"):
        raise ValidationError('Missing "proposalId" and "voter".')
    if not is_valid_address(body["voter"]):
        raise ValidationError("Invalid voter address provided.")
    power = await _service(request).compute_power(
        parse_uint(body["proposalId"], "proposalId"), body["voter"]
    )
    return {"power": str(power)}


@router.post("/vote")
async def submit_vote(request: Request, body: dict = Body(...)):
    result = await _service(request).submit_vote(body)
    return result.to_dict()


@router.post("/merkle/{proposal_id}")
async def freeze(proposal_id: str, request: Request):
    artifact = await _service(request).freeze(parse_uint(proposal_id, "proposalId"))
    return artifact.to_dict()


@router.post("/multiproof/{proposal_id}")
async def multiproof(proposal_id: str, request: Request, body: dict = Body(default={})):
    voters = body.get("voters") or None
    if voters is not None:
        if not isinstance(voters, list) or not all(isinstance(v, str) for v in voters):
            raise ValidationError("voters must be a list of addresses")
        invalid = [v for v in voters if not is_valid_address(v)]
        if invalid:
            raise ValidationError(f"Invalid voter address: {invalid[0]!r}")
    proof = await _service(request).multiproof(parse_uint(proposal_id, "proposalId"), voters)
    return proof.to_dict()


@router.get("/nextNonce/{proposal_id}/{voter}")
async def next_nonce(proposal_id: str, voter: str, request: Request):
    if not is_valid_address(voter):
        raise ValidationError("Invalid voter address provided.")
    nonce = await _service(request).next_nonce(parse_uint(proposal_id, "proposalId"), voter)
    return {"nonce": str(nonce)}


def create_app(service=None, config=None) -> FastAPI:
    """
    Build the API.

    Args:
        service: Ready GovernanceService (tests, embedding); owned by the caller
        config: CrossGovConfig used to build and own a service at startup
            when `service` is not given
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.service is None:
            from ..config import load_config
            from ..service import GovernanceService

            cfg = config or load_config()
            cfg.validate()
            owned = app.state.service = await GovernanceService.from_config(cfg)
        logger.info("CrossGov API started")
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()
                app.state.service = None
            logger.info("CrossGov API stopped")

    app = FastAPI(
        title="CrossGov",
        description="Off-chain vote aggregation for cross-chain governance.",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        elapsed = (time.time() - start_time) * 1000
        logger.info(f"{request.method} {request.url.path} --> {response.status_code} ({elapsed:.1f} ms)")
        return response

    @app.exception_handler(CrossGovError)
    async def crossgov_error_handler(request: Request, exc: CrossGovError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(error.get("msg", "invalid value") for error in exc.errors())
        logger.info(f"{request.method} {request.url.path} rejected (400): {problems}")
        return JSONResponse(status_code=400, content={"error": f"Invalid request body: {problems}"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    app.include_router(router)
    return app
