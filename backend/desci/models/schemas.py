from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _as_list(value: Any) -> List[str]:
    """Accept a list, a single string, or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


# ----------------------------------------------------------------------------
# Papers
# ----------------------------------------------------------------------------


class Paper(CamelModel):
    paper_id: str
    title: str
    authors: List[str]
    abstract: str
    keywords: List[str] = Field(default_factory=list)
    content_topic_id: Optional[str] = None
    publisher_id: str
    fee: float = 10.0
    publish_date: datetime = Field(default_factory=utcnow)
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None

    # Blob reference, present only for uploaded papers
    file_id: Optional[str] = None
    filename: Optional[str] = None
    original_name: Optional[str] = None
    mimetype: Optional[str] = None
    size: Optional[int] = None
    upload_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PaperSummary(CamelModel):
    """Listing projection; file fields omitted."""

    paper_id: str
    title: str
    authors: List[str]
    abstract: str
    keywords: List[str] = Field(default_factory=list)
    publisher_id: str
    fee: float
    publish_date: datetime
    access_count: int = 0

    @classmethod
    def from_paper(cls, paper: Paper) -> "PaperSummary":
        return cls.model_validate(paper.model_dump())


class PaperCreateRequest(CamelModel):
    """Body of POST /api/papers.

    Every field is optional here so missing ones are reported as a 400 by the
    route instead of a schema error.
    """

    paper_id: Optional[str] = None
    title: Optional[str] = None
    authors: Optional[List[str]] = None
    abstract: Optional[str] = None
    keywords: Optional[List[str]] = None
    publisher_id: Optional[str] = None
    fee: Optional[Any] = None

    @field_validator("authors", "keywords", mode="before")
    @classmethod
    def _listify(cls, value):
        if value is None:
            return None
        return _as_list(value)

    def missing_fields(self) -> List[str]:
        required = {
            "paperId": self.paper_id,
            "title": self.title,
            "authors": self.authors,
            "abstract": self.abstract,
            "publisherId": self.publisher_id,
        }
        return [name for name, value in required.items() if not value or (isinstance(value, str) and not value.strip())]


class PaperCreatedResponse(BaseModel):
    success: bool = True
    message: str
    paper: Paper


# ----------------------------------------------------------------------------
# Chat
# ----------------------------------------------------------------------------


class ChatRequest(BaseModel):
    message: Optional[str] = None


class ChatPaper(CamelModel):
    paper_id: str
    title: str
    authors: List[str]
    fee: float


class ChatResponse(BaseModel):
    reply: str
    papers: List[ChatPaper]


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SessionStage(str, Enum):
    IDLE = "idle"
    PAPERS_SELECTED = "papers-selected"
    QUOTED = "quoted"
    PAID = "paid"


class ChatMessage(CamelModel):
    role: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class RelatedPaper(CamelModel):
    paper_id: str
    title: str
    fee: float
    content_topic_id: Optional[str] = None
    publisher_id: Optional[str] = None


class QuotedPaper(CamelModel):
    paper_id: str
    title: str
    fee: float


class Quote(CamelModel):
    papers_cost: float
    platform_fee: float
    total_cost: float
    papers: List[QuotedPaper]


class PaymentRecord(CamelModel):
    mode: str
    transaction_ids: List[str] = Field(default_factory=list)
    settled_at: Optional[datetime] = None
    note: Optional[str] = None


class ChatSession(CamelModel):
    session_id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    related_papers: List[RelatedPaper] = Field(default_factory=list)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    quote: Optional[Quote] = None
    payment: Optional[PaymentRecord] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def stage(self) -> SessionStage:
        if self.payment_status == PaymentStatus.PAID:
            return SessionStage.PAID
        if self.quote is not None:
            return SessionStage.QUOTED
        if self.related_papers:
            return SessionStage.PAPERS_SELECTED
        return SessionStage.IDLE

    def add_message(self, role: str, content: str) -> None:
        self.messages.append(ChatMessage(role=role, content=content))

    def set_related_papers(self, papers: List[Paper]) -> None:
        # A new selection invalidates any previous quote or payment
        self.related_papers = [
            RelatedPaper(
                paper_id=p.paper_id,
                title=p.title,
                fee=p.fee,
                content_topic_id=p.content_topic_id,
                publisher_id=p.publisher_id,
            )
            for p in papers
        ]
        self.quote = None
        self.payment = None
        self.payment_status = PaymentStatus.PENDING

    def calculate_quote(self, platform_fee_percent: float = 5.0) -> Quote:
        papers_cost = sum(p.fee for p in self.related_papers)
        platform_fee = papers_cost * platform_fee_percent / 100
        self.quote = Quote(
            papers_cost=papers_cost,
            platform_fee=platform_fee,
            total_cost=papers_cost + platform_fee,
            papers=[
                QuotedPaper(paper_id=p.paper_id, title=p.title, fee=p.fee)
                for p in self.related_papers
            ],
        )
        return self.quote

    def last_user_question(self) -> Optional[str]:
        for msg in reversed(self.messages):
            if msg.role == "user":
                return msg.content
        return None


class SessionMessageResponse(CamelModel):
    session_id: str
    stage: SessionStage
    reply: str
    papers: List[ChatPaper] = Field(default_factory=list)
    quote: Optional[Quote] = None
    payment_status: PaymentStatus
