"""
HTTP API for tenant document retrieval.

Endpoints:
- POST /rag/search: ranked passages for a question
- GET /rag/search: service descriptor
- POST /rag/cache/clear: drop every retrieval cache
- GET /health: liveness probe
"""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from retrieval.errors import SearchFailed
from retrieval.pipeline import RetrievalPipeline, get_retrieval_pipeline
from schemas.config import get_settings
from schemas.models import ChatMessage, SearchFilters, SearchRequest, UserContext

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="RAG Retrieval API")


class SearchBody(BaseModel):
    tenant_id: str | None = None
    query: str | None = None
    k: int | None = None
    user_context: UserContext | None = None
    filters: SearchFilters | None = None
    conversation_history: list[ChatMessage] = Field(default_factory=list)


def _validation_error(message: str, details=None) -> JSONResponse:
    content = {"error": "ValidationError", "message": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=400, content=content)


def jsonable_errors(errors) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in errors
    ]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _validation_error("Invalid request body", details=jsonable_errors(exc.errors()))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/rag/search")
def describe_search():
    default_k = get_settings().get_retrieval_config().default_k
    return {
        "service": "rag-search",
        "method": "POST",
        "body": {
            "tenant_id": "string (required)",
            "query": "string (required)",
            "k": f"integer (optional, default {default_k})",
            "user_context": "object (optional)",
            "filters": "object (optional): content_type, document_ids",
            "conversation_history": "array (optional)",
        },
    }


@app.post("/rag/search")
async def search(
    body: SearchBody,
    pipeline: RetrievalPipeline = Depends(get_retrieval_pipeline),
):
    if not body.tenant_id:
        return _validation_error("tenant_id is required")
    if not body.query or not body.query.strip():
        return _validation_error("query is required")

    k = body.k if body.k and body.k > 0 else pipeline.config.default_k

    try:
        request = SearchRequest(
            tenant_id=body.tenant_id,
            query=body.query,
            k=k,
            user_context=body.user_context,
            filters=body.filters,
        )
    except ValidationError as e:
        return _validation_error("Invalid search request", details=jsonable_errors(e.errors()))

    try:
        response = await pipeline.retrieve(request, conversation_history=body.conversation_history)
    except SearchFailed as e:
        logger.error(f"Search failed for tenant {body.tenant_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "SearchError", "message": str(e)},
        )

    return response.model_dump(mode="json", exclude={"chunks": {"__all__": {"chunk": {"embedding"}}}})


@app.post("/rag/cache/clear")
def clear_cache(pipeline: RetrievalPipeline = Depends(get_retrieval_pipeline)):
    pipeline.clear_caches()
    return {"cleared": True}
