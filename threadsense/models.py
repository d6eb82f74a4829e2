"""Core Pydantic domain models for threadsense."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ReactionKind(str, Enum):
    THUMBS_UP = "+1"
    THUMBS_DOWN = "-1"
    LAUGH = "laugh"
    CONFUSED = "confused"
    HEART = "heart"
    HOORAY = "hooray"
    ROCKET = "rocket"
    EYES = "eyes"


class CommentKind(str, Enum):
    ISSUE_COMMENT = "issue_comment"
    REVIEW_COMMENT = "review_comment"


class ReferenceType(str, Enum):
    ROOT = "root"
    CLOSING = "closing"
    DEPENDS = "depends"
    DIRECT = "direct"


class NodeStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class BlockKind(str, Enum):
    SPEC = "spec"
    CONVERSATION = "conversation"
    DIFF = "diff"


class SpanKind(str, Enum):
    ADDITION = "addition"
    DELETION = "deletion"


class PhraseType(str, Enum):
    UNIGRAM = "unigram"
    BIGRAM = "bigram"
    TRIGRAM = "trigram"


class IdentityKey(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    org: str
    repo: str
    number: int

    @property
    def owner_repo(self) -> str:
        return f"{self.org}/{self.repo}"

    @property
    def canonical(self) -> str:
        return f"{self.org}/{self.repo}/{self.number}"

    def __str__(self) -> str:
        return self.canonical


class Reaction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: ReactionKind
    user: str | None = None


class CommentEdit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    body: str = ""
    created_at: str | None = None
    updated_at: str | None = None


class Comment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    node_id: str | None = None
    author: str
    author_is_bot: bool = False
    body: str = ""
    owner_repo: str
    source_url: str
    kind: CommentKind = CommentKind.ISSUE_COMMENT


class WeightedComment(Comment):
    weight: float = 0.0
    reactions: list[Reaction] = Field(default_factory=list)
    edits: list[CommentEdit] = Field(default_factory=list)


class FetchedItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    body: str = ""
    is_pull_request: bool = False
    diff: str | None = None
    comments: list[Comment] = Field(default_factory=list)
    closing_keys: list[str] = Field(default_factory=list)


class IssueNode(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    depth: int
    status: NodeStatus = NodeStatus.PENDING
    reference_type: ReferenceType = ReferenceType.DIRECT
    parent: str | None = None
    body: str = ""
    diff: str | None = None
    is_pull_request: bool = False
    comments: list[WeightedComment] = Field(default_factory=list)
    children: list[str] = Field(default_factory=list)
    error: str | None = None


@dataclass(order=True)
class QueueEntry:
    priority: int
    sequence: int
    key: str = field(compare=False)
    depth: int = field(compare=False)
    parent_key: str | None = field(default=None, compare=False)
    reference_type: ReferenceType = field(default=ReferenceType.DIRECT, compare=False)


class CrawlResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    root: str
    nodes: dict[str, IssueNode] = Field(default_factory=dict)
    order: list[str] = Field(default_factory=list)

    def comments_by_key(self) -> dict[str, list[WeightedComment]]:
        return {key: list(self.nodes[key].comments) for key in self.order if self.nodes[key].comments}

    def all_comments(self) -> list[WeightedComment]:
        return [comment for key in self.order for comment in self.nodes[key].comments]

    def statuses(self) -> dict[str, NodeStatus]:
        return {key: self.nodes[key].status for key in self.order}


class ContextBlock(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    kind: BlockKind
    title: str
    text: str
    token_count: int = 0


class SerializedContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    blocks: list[ContextBlock] = Field(default_factory=list)
    token_count: int = 0

    def within(self, max_tokens: int) -> SerializedContext:
        """Longest block prefix whose running total fits ``max_tokens``.

        The first block (the root specification) is always kept so the
        consumer never receives an empty primary context.
        """
        kept: list[ContextBlock] = []
        total = 0
        for block in self.blocks:
            if kept and total + block.token_count > max_tokens:
                break
            kept.append(block)
            total += block.token_count
        return SerializedContext(blocks=kept, token_count=total)

    def render(self) -> str:
        return "".join(block.text for block in self.blocks)


class ChangeSpan(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    kind: SpanKind


class PhraseAdjustment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phrase: str
    phrase_type: PhraseType
    before: float
    after: float


class FeedbackResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    comment_id: str
    spans: list[ChangeSpan] = Field(default_factory=list)
    adjustments: list[PhraseAdjustment] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.spans)


class PhraseWeight(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phrase: str
    weight: float
    comment_node_id: str | None = None


class AssembledContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    root: str
    question: str = ""
    blocks: list[ContextBlock] = Field(default_factory=list)
    relevant_comments: list[str] = Field(default_factory=list)
    question_score: float = 0.0
    token_count: int = 0
    node_statuses: dict[str, NodeStatus] = Field(default_factory=dict)
