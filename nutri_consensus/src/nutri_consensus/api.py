import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import config
from .engine import AnalysisEngine
from .errors import FallbackExhaustedError
from .request_validation import sanitize_analyze_request
from .signing import KeypairSigner


@asynccontextmanager
async def lifespan(app: FastAPI):
    global engine
    logger.info("Analysis service starting up...")
    if engine is None:
        engine = AnalysisEngine(config.EngineConfig())
    if not engine.initialized:
        signer = KeypairSigner.from_secret(config.SIGNING_PRIVATE_KEY) if config.SIGNING_PRIVATE_KEY else None
        engine.initialize(signer)
    try:
        yield
    finally:
        if engine is not None:
            await engine.shutdown()
        logger.info("Analysis service shut down.")


app = FastAPI(title="Nutri Consensus", lifespan=lifespan)
engine = None
logger = logging.getLogger("nutri_consensus")
logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")


@app.post("/v1/analyze")
async def analyze(request: Request):
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Invalid JSON payload for /v1/analyze: %s", exc)
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)
    if not isinstance(raw, dict):
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    sanitized = sanitize_analyze_request(raw)
    if sanitized.missing_fields:
        return JSONResponse(
            {"error": "Missing required fields", "missing": sanitized.missing_fields},
            status_code=400,
        )
    if engine is None or not engine.initialized:
        return JSONResponse({"error": "Engine not initialized"}, status_code=503)

    try:
        result = await engine.analyze(
            sanitized.image_base64,
            sanitized.credentials,
            request_id=sanitized.request_id,
        )
    except FallbackExhaustedError as e:
        return JSONResponse(
            {"error": e.cause, "providersAttempted": e.providers_attempted, "requestId": e.request_id},
            status_code=502,
            headers={"x-request-id": e.request_id or ""},
        )

    return JSONResponse(
        result.to_dict(),
        headers={
            "x-request-id": result.request_id or "",
            "x-analysis-mode": result.mode.value,
            "x-providers-used": str(result.providers_used),
        },
    )


@app.get("/health")
async def health_check():
    if engine is None:
        return JSONResponse({"status": "starting"}, status_code=503)
    status = "ok" if engine.initialized else "stopped"
    return JSONResponse({"status": status, **engine.describe()}, status_code=200 if engine.initialized else 503)
