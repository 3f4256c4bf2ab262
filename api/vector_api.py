from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.config import Settings
from core.embeddings import get_backend
from core.models import ColorMatch, SearchStatus
from core.search import SimilaritySearchService, search_with_retry
from db.setup import make_engine
from db.store import ColorStore

STATUS_CODES = {
    SearchStatus.OK: 200,
    SearchStatus.INVALID_QUERY: 422,
    SearchStatus.EMBEDDING_FAILED: 502,
    SearchStatus.TIMEOUT: 504,
    SearchStatus.NO_DATA: 404,
    SearchStatus.STORE_ERROR: 503,
}


def build_search_service(settings: Settings = None) -> SimilaritySearchService:
    settings = settings or Settings.from_env()
    backend = get_backend(settings)
    store = ColorStore(make_engine(settings.database_url))
    return SimilaritySearchService.from_settings(settings, backend, store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configuration errors stop the server before it accepts requests
    app.state.search_service = build_search_service()
    yield


app = FastAPI(title="Color Genie Search API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    k: int = Field(default=10, ge=1, le=100)


class SearchResponse(BaseModel):
    query: str
    backend: str
    status: SearchStatus
    matches: List[ColorMatch]
    error: Optional[str] = None
    attempts: int


def get_search_service(request: Request) -> SimilaritySearchService:
    return request.app.state.search_service


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.post("/search", response_model=SearchResponse)
async def search(
    req: SearchRequest, service: SimilaritySearchService = Depends(get_search_service)
):
    result = await search_with_retry(service, req.query, k=req.k)
    body = SearchResponse(**result.model_dump(include=set(SearchResponse.model_fields)))
    return JSONResponse(
        status_code=STATUS_CODES[result.status], content=body.model_dump(mode="json")
    )
