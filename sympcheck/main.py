"""FastAPI application: diagnosis REST endpoints, WebSocket conversation, CORS."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sympcheck.config import settings
from sympcheck.diagnosis.ranking import rank_conditions
from sympcheck.llm.client import GatewayError, RateLimitExceeded
from sympcheck.llm.gateway import (
    diagnose_symptoms,
    get_condition_details,
    get_interactive_response,
)
from sympcheck.models import (
    ConditionDetail,
    DiagnosisCondition,
    DiagnosisRequest,
    InteractiveRequest,
)
from sympcheck.websocket_handler import handle_websocket

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

RATE_LIMIT_BODY = {"error": "External API rate limit exceeded"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Reasoning backend configured at: %s (model: %s)",
        settings.llm_base_url,
        settings.llm_model,
    )
    if settings.llm_api_key == "EMPTY":
        logger.warning("No API key configured; upstream calls will likely be rejected.")
    yield
    logger.info("Shutting down.")


app = FastAPI(
    title="SympCheck",
    description="Interactive symptom elicitation and differential diagnosis support",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_symptom(symptom: str | None) -> None:
    if not symptom or not symptom.strip():
        raise HTTPException(status_code=400, detail="Symptom required")


def _gateway_failure(path: str, exc: GatewayError) -> JSONResponse:
    """429 for upstream rate limits, 500 for every other gateway failure."""
    if isinstance(exc, RateLimitExceeded):
        logger.warning("Upstream rate limit on %s", path)
        return JSONResponse(status_code=429, content=RATE_LIMIT_BODY)
    logger.error("Gateway failure on %s: %s", path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Gateway failure"})


@app.post("/api/diagnosis/interactive")
async def interactive(request: InteractiveRequest):
    _require_symptom(request.symptom)
    try:
        response = await get_interactive_response(request)
    except GatewayError as exc:
        return _gateway_failure("/api/diagnosis/interactive", exc)
    return response.model_dump(by_alias=True)


@app.post("/api/diagnosis/analyze", response_model=list[DiagnosisCondition], response_model_by_alias=True)
async def analyze(request: DiagnosisRequest, raw: bool = False):
    _require_symptom(request.symptom)
    try:
        conditions = await diagnose_symptoms(request)
    except GatewayError as exc:
        return _gateway_failure("/api/diagnosis/analyze", exc)
    if raw:
        return conditions
    return rank_conditions(conditions)


@app.get("/api/diagnosis/condition/{condition_id}", response_model=ConditionDetail, response_model_by_alias=True)
async def condition_details(condition_id: str):
    if not condition_id.strip():
        raise HTTPException(status_code=400, detail="Condition ID is required")
    try:
        detail = await get_condition_details(condition_id)
    except GatewayError as exc:
        return _gateway_failure("/api/diagnosis/condition", exc)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"No details for condition {condition_id}")
    return detail


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await handle_websocket(websocket)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "model": settings.llm_model,
        "base_url": settings.llm_base_url,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sympcheck.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
