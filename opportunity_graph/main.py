import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from opportunity_graph.auth import (
    EDITOR_ROLES,
    LoginRequest,
    TokenResponse,
    get_current_user,
    get_current_user_info,
    login,
    require_editor,
)
from opportunity_graph.config_loader import get_available_domains, get_config, get_domain_config_summary
from opportunity_graph.database import GraphUnavailableError, db
from opportunity_graph.llm_router import AVAILABLE_MODELS, DEFAULT_MODEL, provider_key_status
from opportunity_graph.logic.assembler import assemble_graph
from opportunity_graph.logic.intent import Intent
from opportunity_graph.logic.pipeline import QueryPipeline
from opportunity_graph.logic.schema_registry import get_schema
from opportunity_graph.models import ChatQueryRequest, GraphNeighborhoodResponse, GraphStats, MutationRequest

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

TECHNICAL_ISSUE = "We're experiencing a technical issue with the graph database. Please try again shortly."
UNEXPECTED_ERROR = "Something went wrong while processing your request. Please try again."

app = FastAPI(title="Opportunity Graph API")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Warm up connections and caches on server start."""
    logger.info("Starting server warmup...")
    get_schema()
    db.warmup()
    logger.info("Server ready")


@app.on_event("shutdown")
async def shutdown_event():
    db.close()


def get_pipeline() -> QueryPipeline:
    return QueryPipeline(connection=db)


def _http_error(e: Exception) -> HTTPException:
    """Map pipeline failures to HTTP errors without leaking engine messages."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, GraphUnavailableError):
        logger.exception("Graph store unavailable")
        return HTTPException(status_code=503, detail=TECHNICAL_ISSUE)
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("Unexpected error while handling request")
    return HTTPException(status_code=500, detail=UNEXPECTED_ERROR)


@app.get("/")
async def root():
    return {"message": "Opportunity Graph API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


# =============================================================================
# AUTH
# =============================================================================

@app.post("/auth/login", response_model=TokenResponse)
async def auth_login(request: LoginRequest):
    return login(request)


@app.get("/auth/verify")
async def auth_verify(user_info: dict = Depends(get_current_user_info)):
    return {"valid": True, "username": user_info["username"], "role": user_info["role"]}


# =============================================================================
# CHAT: READ PATH
# =============================================================================

@app.post("/api/chat/query")
def chat_query(
    request: ChatQueryRequest,
    pipeline: QueryPipeline = Depends(get_pipeline),
    _user: str = Depends(get_current_user),
):
    """Answer a natural-language question with a graph and an explanation."""
    try:
        return pipeline.answer(request.to_pipeline())
    except Exception as e:
        raise _http_error(e)


@app.post("/api/chat")
def chat(
    request: ChatQueryRequest,
    pipeline: QueryPipeline = Depends(get_pipeline),
    user_info: dict = Depends(get_current_user_info),
):
    """Route a message to the read path or to a mutation proposal."""
    payload = request.to_pipeline()
    if pipeline.classify(payload) == Intent.MUTATION and user_info.get("role") not in EDITOR_ROLES:
        raise HTTPException(status_code=403, detail="Your role is not allowed to change the graph")
    try:
        return pipeline.chat(payload)
    except Exception as e:
        raise _http_error(e)


# =============================================================================
# CHAT: MUTATION PATH
# =============================================================================

@app.post("/api/chat/mutation")
def propose_mutation(
    request: ChatQueryRequest,
    pipeline: QueryPipeline = Depends(get_pipeline),
    _user: dict = Depends(require_editor),
):
    """Draft a graph change for review. Nothing is written."""
    try:
        return pipeline.propose_mutation(request.to_pipeline())
    except Exception as e:
        raise _http_error(e)


@app.post("/api/chat/mutation/execute")
def execute_mutation(
    request: MutationRequest,
    pipeline: QueryPipeline = Depends(get_pipeline),
    user_info: dict = Depends(require_editor),
):
    """Confirm a proposed plan and run it once."""
    logger.info(f"User {user_info['username']} confirmed mutation plan {request.mutation_plan.plan_id}")
    try:
        return pipeline.execute_mutation(request.to_pipeline())
    except Exception as e:
        raise _http_error(e)


@app.post("/api/chat/mutation/cancel")
def cancel_mutation(
    request: MutationRequest,
    pipeline: QueryPipeline = Depends(get_pipeline),
    _user: dict = Depends(require_editor),
):
    try:
        return pipeline.cancel_mutation(request.to_pipeline())
    except Exception as e:
        raise _http_error(e)


# =============================================================================
# GRAPH & SCHEMA
# =============================================================================

@app.get("/graph/stats", response_model=GraphStats, response_model_by_alias=True)
def get_graph_stats(version: Optional[str] = None, _user: str = Depends(get_current_user)):
    """Node and relationship counts for a graph version."""
    try:
        with db.resolve_store_handle(version) as store:
            return GraphStats(
                nodes=store.count_nodes(),
                relationships=store.count_relationships(),
                connected=True,
                graph_version=store.version,
            )
    except Exception as e:
        raise _http_error(e)


@app.get("/graph/neighborhood/{element_id}", response_model=GraphNeighborhoodResponse)
def get_graph_neighborhood(
    element_id: str,
    max_nodes: int = 30,
    version: Optional[str] = None,
    _user: str = Depends(get_current_user),
):
    """One-hop neighbourhood of a node, for expanding the graph view."""
    max_nodes = min(max(max_nodes, 1), 100)
    try:
        with db.resolve_store_handle(version) as store:
            rows = store.neighbors(element_id, limit=max_nodes)
        if not rows:
            raise HTTPException(status_code=404, detail=f"Node '{element_id}' not found")
        return GraphNeighborhoodResponse(
            center_node_id=element_id,
            graph_data=assemble_graph(rows, get_schema()),
            truncated=len(rows) >= max_nodes,
        )
    except Exception as e:
        raise _http_error(e)


@app.get("/api/schema")
async def get_graph_schema(_user: str = Depends(get_current_user)):
    return get_schema().to_dict()


# =============================================================================
# CONFIGURATION
# =============================================================================

@app.get("/config/domains")
async def list_domains(_user: str = Depends(get_current_user)):
    return {"domains": get_available_domains(), "current": get_config().domain_id}


@app.get("/config/domain")
async def get_domain_summary(_user: str = Depends(get_current_user)):
    return get_domain_config_summary()


@app.get("/config/models")
async def get_models(_user: str = Depends(get_current_user)):
    return {"models": AVAILABLE_MODELS, "default": DEFAULT_MODEL, "keys": provider_key_status()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("opportunity_graph.main:app", host="0.0.0.0", port=8000, reload=True)
