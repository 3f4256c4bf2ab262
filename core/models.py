from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

NAME_MAX_LENGTH = 100
HEX_PATTERN = r"^[0-9a-fA-F]{6}$"


class ColorRecord(BaseModel):
    """A validated source row. Build it through core.validation.validate_row."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH - 1)
    hex_color: str = Field(pattern=HEX_PATTERN)
    is_curated: bool = False


class EmbeddedColor(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: ColorRecord
    embedding: List[float]


class EmbeddingOutcome(BaseModel):
    """Result for one input of an embedding batch, keyed by input position."""

    index: int
    text: str
    embedding: Optional[List[float]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.embedding is not None


class ColorMatch(BaseModel):
    name: str
    hex_color: str
    is_curated: bool
    distance: float


class SearchStatus(str, Enum):
    OK = "ok"
    INVALID_QUERY = "invalid_query"
    EMBEDDING_FAILED = "embedding_failed"
    TIMEOUT = "timeout"
    NO_DATA = "no_data"
    STORE_ERROR = "store_error"


class SearchResult(BaseModel):
    query: str
    backend: str
    status: SearchStatus
    matches: List[ColorMatch] = Field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 1
    duration_ms_embedding: Optional[int] = None
    duration_ms_db: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == SearchStatus.OK


class RowFailure(BaseModel):
    offset: int
    name: str
    stage: str  # validation | embedding | persistence
    reason: str


class IngestReport(BaseModel):
    backend: str
    start: int
    processed: int = 0
    stored: int = 0
    failed: int = 0
    failures: List[RowFailure] = Field(default_factory=list)
    cancelled: bool = False
    next_offset: Optional[int] = None

    def record_failure(self, offset: int, name: str, stage: str, reason: str) -> None:
        self.failed += 1
        self.failures.append(RowFailure(offset=offset, name=name, stage=stage, reason=reason))

    def summary(self) -> str:
        text = (
            f"[{self.backend}] processed={self.processed} stored={self.stored} "
            f"failed={self.failed} next_offset={self.next_offset}"
        )
        if self.cancelled:
            text += " (cancelled)"
        return text
