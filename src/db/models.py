"""Pydantic models for stored rows and pipeline data structures."""

from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CrawlStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ContentType(StrEnum):
    HOMEPAGE = "homepage"
    ARTICLE = "article"
    PRODUCT = "product"
    SUPPORT = "support"
    ABOUT = "about"
    CONTACT = "contact"
    PAGE = "page"


class ChunkType(StrEnum):
    INTRODUCTION = "introduction"
    CONCLUSION = "conclusion"
    FEATURES = "features"
    PRICING = "pricing"
    TUTORIAL = "tutorial"
    FAQ = "faq"
    CONTENT = "content"


class SearchSource(StrEnum):
    """Which retrieval strategy produced a result."""

    VECTOR = "vector"
    TEXT = "text"
    HYBRID = "hybrid"


class Confidence(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


# --- Tenant registry ---


class CrawlSettings(BaseModel):
    """Per-tenant (or per-domain) crawl configuration."""

    max_pages: int = 100
    crawl_delay: float = 1.0  # seconds, applied after every fetch
    allowed_paths: list[str] = []
    excluded_paths: list[str] = []
    respect_robots: bool = True
    user_agent: str | None = None
    max_concurrent: int = 3

    def merged(self, *overrides: dict[str, object] | None) -> "CrawlSettings":
        """Return a copy with each override dict applied in order (later wins)."""
        update: dict[str, object] = {}
        for override in overrides:
            if override:
                update.update({k: v for k, v in override.items() if k in type(self).model_fields})
        return self.model_validate({**self.model_dump(), **update})


class DomainConfig(BaseModel):
    """One crawl target of a tenant."""

    url: str
    type: str = "main"
    specific_pages: list[str] = []
    crawl_settings: dict[str, object] = {}


class Tenant(BaseModel):
    """A broker as seen by the core (read from the tenant registry)."""

    id: str
    display_name: str
    domains: list[DomainConfig] = []
    crawl_settings: CrawlSettings = Field(default_factory=CrawlSettings)
    no_data_response: str | None = None
    status: str = "active"


# --- Crawling ---


class ImageRef(BaseModel):
    src: str
    alt: str = ""


class PageMetadata(BaseModel):
    """Secondary page metadata extracted from <meta> tags and markup."""

    author: str | None = None
    publish_date: str | None = None
    last_modified: str | None = None
    language: str = "en"
    keywords: list[str] = []


class Page(BaseModel):
    """A fetched, parsed page. One per (tenant, url)."""

    id: UUID | None = None
    tenant_id: str
    url: str
    domain: str = ""
    path: str = "/"
    title: str = ""
    description: str = ""
    content: str = ""
    content_type: ContentType = ContentType.PAGE
    headings: list[str] = []
    images: list[ImageRef] = []
    links: list[str] = []
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    content_hash: str = ""
    size_bytes: int = 0
    page_rank: float = 1.0
    document_embedding: list[float] | None = None
    crawled_at: datetime = Field(default_factory=_utcnow)


class CrawlError(BaseModel):
    url: str
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)


class CrawlOutcome(BaseModel):
    """Result of walking one site."""

    domain: str
    pages: list[Page] = []
    errors: list[CrawlError] = []


class CrawlProgress(BaseModel):
    total_pages: int = 0
    crawled_pages: int = 0
    failed_pages: int = 0
    new_pages: int = 0
    updated_pages: int = 0


class CrawlStats(BaseModel):
    bytes_downloaded: int = 0
    embeddings_created: int = 0
    average_page_time: float = 0.0


class CrawlJob(BaseModel):
    """A crawl requested for a tenant (maps to crawl_jobs table)."""

    id: UUID = Field(default_factory=uuid4)
    tenant_id: str
    domains: list[str] = []
    status: CrawlStatus = CrawlStatus.PENDING
    progress: CrawlProgress = Field(default_factory=CrawlProgress)
    errors: list[CrawlError] = []
    stats: CrawlStats = Field(default_factory=CrawlStats)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None


# --- Chunking ---


class ChunkData(BaseModel):
    """A chunk produced by one chunking pass, ready for embedding."""

    content: str
    chunk_index: int
    token_estimate: int
    chunk_type: ChunkType = ChunkType.CONTENT
    start_sentence: int = 0
    end_sentence: int = 0


class Chunk(BaseModel):
    """A stored chunk with its embedding (maps to page_chunks table)."""

    id: UUID | None = None
    page_id: UUID
    tenant_id: str
    url: str
    title: str = ""
    content_type: ContentType = ContentType.PAGE
    page_rank: float = 1.0
    chunk_index: int
    content: str
    embedding: list[float]
    token_estimate: int
    chunk_type: ChunkType = ChunkType.CONTENT


# --- Retrieval and answers ---


class SearchResult(BaseModel):
    """A single ranked retrieval hit."""

    chunk_id: UUID | None = None
    url: str
    title: str = ""
    content: str
    chunk_index: int = 0
    score: float
    source: SearchSource
    rank: int = 0
    page_rank: float = 1.0
    match_count: int = 0


class SourceReference(BaseModel):
    """A cited source in an answer."""

    url: str
    title: str = ""
    score: float
    snippet: str = ""


class AnswerResponse(BaseModel):
    """Blocking answer returned by the synthesizer."""

    answer: str
    sources: list[SourceReference] = []
    confidence: Confidence = Confidence.LOW
    response_time_ms: int = 0
    tokens_used: int = 0


class Citation(BaseModel):
    number: int
    url: str
    title: str = ""


class CitedAnswer(BaseModel):
    answer: str
    citations: list[Citation] = []


# --- Conversation ---


class ConversationTurn(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class ConversationSession(BaseModel):
    """Ephemeral per-conversation state kept in the key-value cache."""

    id: str
    turns: list[ConversationTurn] = []
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)


class RelevanceCheck(BaseModel):
    """Whether a query leans on earlier turns, and the rendered history to attach."""

    is_related: bool = False
    requires_context: bool = False
    context_text: str = ""
