"""
FastAPI Server for the Strategy Builder

Endpoints:
- POST /strategy/build - Run one chat message through the build pipeline
- POST /strategy/canonicalize - Canonicalize and validate accumulated rules
- POST /strategy/coordinates - Derive chart coordinates from rules or parameters
- GET /status - Health check
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Dict, Any, Optional, List
import logging
import os
from dotenv import load_dotenv

from ai_providers import get_provider, DEFAULT_ANTHROPIC_MODEL, DEFAULT_OPENAI_MODEL
from canonicalizer import build_canonical_strategy
from session_store import ActivityTracker, ConversationStore, InMemoryTTLStore, DEFAULT_SESSION_TTL_MINUTES
from strategy_builder import BuildRequest, StrategyBuilder
from strategy_models import CanonicalizationResult, Rule, StrategyParameters, VisualCoordinates
from tool_choice_extractor import ToolChoiceExtractor, DEFAULT_EXTRACTION_TIMEOUT
from visual_coordinates import derive_coordinates, parameters_from_rules

from contextlib import asynccontextmanager

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown events"""
    logger.info("=" * 60)
    logger.info("Strategy Builder")
    logger.info("Provider: %s", AI_PROVIDER.upper())
    logger.info("Model: %s", AI_MODEL)
    logger.info("Extraction timeout: %.1fs", EXTRACTION_TIMEOUT)
    logger.info("Session TTL: %d min", SESSION_TTL_MINUTES)
    logger.info("=" * 60)
    yield
    removed = session_kv.sweep_expired()
    logger.info("Shutting down, swept %d expired sessions", removed)


# Initialize FastAPI app
app = FastAPI(
    title="Strategy Builder",
    description="Turn a trading conversation into a validated futures strategy",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# CONFIGURATION
# ============================================================================

AI_PROVIDER = os.getenv("AI_PROVIDER", "anthropic").lower()
AI_MODEL = os.getenv("AI_MODEL", None)
EXTRACTION_TIMEOUT = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", str(DEFAULT_EXTRACTION_TIMEOUT)))
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", str(DEFAULT_SESSION_TTL_MINUTES)))

# Get API key based on provider
if AI_PROVIDER == "anthropic":
    AI_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    if not AI_API_KEY:
        raise ValueError("Missing ANTHROPIC_API_KEY environment variable")
    DEFAULT_MODEL = DEFAULT_ANTHROPIC_MODEL
elif AI_PROVIDER == "openai":
    AI_API_KEY = os.getenv("OPENAI_API_KEY")
    if not AI_API_KEY:
        raise ValueError("Missing OPENAI_API_KEY environment variable")
    DEFAULT_MODEL = DEFAULT_OPENAI_MODEL
else:
    raise ValueError(f"Invalid AI_PROVIDER: {AI_PROVIDER}. Must be 'openai' or 'anthropic'")

AI_MODEL = AI_MODEL or DEFAULT_MODEL

# ============================================================================
# INITIALIZE PIPELINE
# ============================================================================

ai_provider = get_provider(
    api_key=AI_API_KEY,
    model=AI_MODEL,
    provider=AI_PROVIDER
)
session_kv = InMemoryTTLStore(ttl_seconds=SESSION_TTL_MINUTES * 60)
strategy_builder = StrategyBuilder(
    extractor=ToolChoiceExtractor(ai_provider=ai_provider, timeout=EXTRACTION_TIMEOUT),
    conversations=ConversationStore(session_kv),
    activity=ActivityTracker(session_kv),
)


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class CanonicalizeRequest(BaseModel):
    """Accumulated rules to canonicalize"""
    rules: List[Rule] = Field(..., description="Accumulated strategy rules")
    pattern: Optional[str] = Field(default=None, description="Confirmed pattern key, if any")

    model_config = {
        "json_schema_extra": {
            "example": {
                "rules": [
                    {"category": "setup", "label": "Pattern", "value": "Opening Range Breakout"},
                    {"category": "setup", "label": "Instrument", "value": "ES"},
                    {"category": "exit", "label": "Stop Loss", "value": "50% of range"},
                ],
                "pattern": "opening_range_breakout",
            }
        }
    }


class CoordinatesRequest(BaseModel):
    """Either accumulated rules or explicit drawing parameters"""
    rules: Optional[List[Rule]] = None
    parameters: Optional[StrategyParameters] = None


class StatusResponse(BaseModel):
    """Status check response"""
    status: str
    provider: str
    model: str
    extraction_timeout: float
    session_ttl_minutes: int
    active_sessions: int


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/status", response_model=StatusResponse)
async def status():
    """Health check endpoint"""
    return StatusResponse(
        status="running",
        provider=AI_PROVIDER,
        model=AI_MODEL,
        extraction_timeout=EXTRACTION_TIMEOUT,
        session_ttl_minutes=SESSION_TTL_MINUTES,
        active_sessions=len(session_kv),
    )


@app.post("/strategy/build")
async def build_strategy(request: BuildRequest) -> Dict[str, Any]:
    """
    Run one chat message through the strategy builder.

    The response `type` is one of pattern_detected, critical_question,
    strategy_complete or error.
    """
    logger.info("Build request (conversation=%s)", request.conversation_id or "new")
    response = await strategy_builder.build(request)
    return response.model_dump(by_alias=True)


@app.post("/strategy/canonicalize", response_model=CanonicalizationResult)
async def canonicalize_strategy(request: CanonicalizeRequest):
    """Canonicalize rules into a typed strategy and report validation errors."""
    return build_canonical_strategy(request.rules, request.pattern)


@app.post("/strategy/coordinates", response_model=VisualCoordinates)
async def strategy_coordinates(request: CoordinatesRequest):
    """Chart coordinates for explicit parameters, or for parameters read from rules."""
    params = request.parameters
    if params is None and request.rules:
        params = parameters_from_rules(request.rules)
    if params is None:
        raise HTTPException(status_code=422, detail="A stop loss is required to derive coordinates")
    return derive_coordinates(params)


# ============================================================================
# STARTUP
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        reload=True
    )
