"""Pydantic data models for History Lens."""

import json
from datetime import date
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from .timeutils import format_timestamp, normalize_epoch, parse_date_filter

Vendor = Literal["chatgpt", "claude", "gemini", "grok"]
Role = Literal["user", "assistant", "tool", "system"]
PageSize = int | Literal["all"]


def _safe_json(raw: Any, fallback: Any) -> Any:
    """Parse a JSON-encoded column, returning fallback on any failure."""
    if not isinstance(raw, str):
        return fallback if raw is None else raw
    if not raw.strip():
        return fallback
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return fallback


def _coerce_id(value: Any) -> Any:
    """Exports sometimes write ids as numbers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    return value


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class Message(BaseModel):
    """One chat message fragment from an export.

    uid is the sole identity: two messages with the same uid are the same
    logical message regardless of any other field.
    """

    model_config = ConfigDict(frozen=True)

    uid: str = Field(min_length=1)
    conversation_id: str = Field(
        min_length=1, validation_alias=AliasChoices("conversation_id", "conversationId")
    )
    message_id: str = Field(validation_alias=AliasChoices("message_id", "messageId"))
    source_id: str = Field(default="", validation_alias=AliasChoices("source_id", "sourceId"))
    vendor: Vendor
    role: Role
    created_at: float = Field(default=0.0, validation_alias=AliasChoices("created_at", "createdAt"))
    text: str = Field(min_length=1)
    title: str = ""
    folder_path: str = Field(
        default="", validation_alias=AliasChoices("folder_path", "folderPath")
    )
    meta: dict[str, Any] = Field(default_factory=dict)
    rank: float | None = Field(default=None, validation_alias=AliasChoices("rank", "fts_rank"))

    @model_validator(mode="before")
    @classmethod
    def _default_message_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (data.get("message_id") or data.get("messageId")):
            data = {k: v for k, v in data.items() if k != "messageId"}
            data["message_id"] = data.get("uid")
        return data

    @field_validator("uid", "conversation_id", "message_id", "source_id", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Any:
        if v is None:
            return ""
        return _coerce_id(v)

    @field_validator("vendor", "role", mode="before")
    @classmethod
    def _normalize_enum(cls, v: Any) -> Any:
        return _lower(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return 0.0
        if isinstance(v, (int, float)):
            try:
                return float(v)
            except OverflowError:
                return 0.0
        if isinstance(v, str):
            text = v.strip()
            try:
                return float(text)
            except ValueError:
                pass
            try:
                return parse_date_filter(text).timestamp()
            except ValueError:
                return 0.0
        return 0.0

    @field_validator("rank", mode="before")
    @classmethod
    def _rank(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            try:
                return float(v)
            except OverflowError:
                return None
        return v

    @field_validator("title", "folder_path", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("meta", mode="before")
    @classmethod
    def _meta(cls, v: Any) -> dict:
        parsed = _safe_json(v, {})
        return parsed if isinstance(parsed, dict) else {}

    @property
    def timestamp(self) -> float:
        """created_at normalised to epoch seconds (0.0 when missing)."""
        return normalize_epoch(self.created_at)


class TreeNode(BaseModel):
    """A node of a conversation's fork tree."""

    id: str = Field(min_length=1)
    conversation_id: str = Field(
        default="", validation_alias=AliasChoices("conversation_id", "conversationId")
    )
    message_id: str = Field(default="", validation_alias=AliasChoices("message_id", "messageId"))
    parent_id: str | None = Field(
        default=None, validation_alias=AliasChoices("parent_id", "parentId")
    )
    children_ids: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("children_ids", "childrenIds")
    )
    depth: int = 0
    is_root: bool = Field(default=False, validation_alias=AliasChoices("is_root", "isRoot"))
    is_branch_point: bool = Field(
        default=False, validation_alias=AliasChoices("is_branch_point", "isBranchPoint")
    )

    @field_validator("id", "conversation_id", "message_id", mode="before")
    @classmethod
    def _ids(cls, v: Any) -> Any:
        if v is None:
            return ""
        return _coerce_id(v)

    @field_validator("parent_id", mode="before")
    @classmethod
    def _parent(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return _coerce_id(v)

    @field_validator("children_ids", mode="before")
    @classmethod
    def _children(cls, v: Any) -> list:
        # Stores hand this back either as a list or as a JSON-encoded string
        parsed = _safe_json(v, [])
        if not isinstance(parsed, list):
            return []
        return [str(_coerce_id(c)) for c in parsed if c is not None and c != ""]

    @field_validator("depth", mode="before")
    @classmethod
    def _depth(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("is_root", "is_branch_point", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> Any:
        return False if v is None else v

    @model_validator(mode="after")
    def _mark_branch_point(self) -> "TreeNode":
        if len(self.children_ids) > 1:
            self.is_branch_point = True
        return self


class ConversationAnnotation(BaseModel):
    """Optional per-conversation side-table row produced by the annotation pipeline."""

    id: str = Field(min_length=1)
    title: str = ""
    provider: str = ""
    ts: str = ""
    summary: str = ""
    tags: list[str] = Field(default_factory=list, validation_alias=AliasChoices("tags", "tags_json"))
    topics: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("topics", "topics_json")
    )
    entities: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("entities", "entities_json")
    )
    outlier_count: int = 0
    attachment_count: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("title", "provider", "ts", "summary", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("tags", "topics", mode="before")
    @classmethod
    def _string_lists(cls, v: Any) -> list:
        parsed = _safe_json(v, [])
        return [str(t) for t in parsed] if isinstance(parsed, list) else []

    @field_validator("entities", "meta", mode="before")
    @classmethod
    def _dicts(cls, v: Any) -> dict:
        parsed = _safe_json(v, {})
        return parsed if isinstance(parsed, dict) else {}

    @field_validator("outlier_count", "attachment_count", mode="before")
    @classmethod
    def _counts(cls, v: Any) -> int:
        try:
            return max(int(v), 0)
        except (TypeError, ValueError, OverflowError):
            return 0


class ConversationSummary(BaseModel):
    """One row of the conversation listing."""

    conv_id: str
    title: str
    vendor: str
    msg_count: int = 0
    first_ts: float = 0.0
    last_ts: float = 0.0
    tags: list[str] = Field(default_factory=list)
    folder_path: str = ""
    first_line: str | None = None
    outlier_count: int = 0
    attachment_count: int = 0

    @computed_field
    @property
    def last_active(self) -> str:
        return format_timestamp(self.last_ts)


class Turn(BaseModel):
    """Consecutive same-role messages displayed as one block."""

    id: str
    role: str
    vendor: str
    ts_start: float
    ts_end: float
    items: list[Message] = Field(default_factory=list)


class DayBucket(BaseModel):
    """Turns that start on the same UTC day ("unknown" for undated turns)."""

    day: str
    turns: list[Turn] = Field(default_factory=list)


class SearchFacets(BaseModel):
    """Active filter request. Empty source_ids means no source restriction."""

    vendor: Vendor | Literal["all"] = "all"
    role: Role | Literal["any"] = "any"
    from_date: date | None = Field(default=None, validation_alias=AliasChoices("from_date", "from"))
    to_date: date | None = Field(default=None, validation_alias=AliasChoices("to_date", "to"))
    source_ids: frozenset[str] = Field(
        default_factory=frozenset, validation_alias=AliasChoices("source_ids", "sourceIds")
    )
    regex: bool = False
    title_body: bool = Field(default=True, validation_alias=AliasChoices("title_body", "titleBody"))

    @field_validator("vendor", mode="before")
    @classmethod
    def _vendor(cls, v: Any) -> Any:
        return "all" if v is None or v == "" else _lower(v)

    @field_validator("role", mode="before")
    @classmethod
    def _role(cls, v: Any) -> Any:
        return "any" if v is None or v == "" else _lower(v)

    @field_validator("source_ids", mode="before")
    @classmethod
    def _source_ids(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            return frozenset([v]) if v else frozenset()
        return v


class FilterResult(BaseModel):
    """Facet filter output.

    source_filter_dropped is set when the source restriction alone would have
    emptied a non-empty candidate set and was therefore skipped.
    """

    messages: list[Message] = Field(default_factory=list)
    source_filter_dropped: bool = False


class PageState(BaseModel):
    page: int = 1
    page_count: int = 0
    page_size: PageSize = 50
    total: int = 0


class TreeStats(BaseModel):
    node_count: int = 0
    root_count: int = 0
    max_depth: int = 0
    branch_point_count: int = 0


class SearchStats(BaseModel):
    """Aggregate numbers for the current search."""

    total_messages: int = 0
    matching_messages: int = 0
    matching_conversations: int = 0
    vendor_counts: dict[str, int] = Field(default_factory=dict)
    first_ts: float = 0.0
    last_ts: float = 0.0


class HistoryPayload(BaseModel):
    """A resolved query result from the external store."""

    conversations: list[ConversationAnnotation] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    nodes: list[TreeNode] = Field(default_factory=list)
    has_tree: bool = False
    schema_name: str = ""
    skipped_conversations: int = 0
    skipped_messages: int = 0
    skipped_nodes: int = 0


class ConversationListResponse(BaseModel):
    """Response from the conversation listing."""

    conversations: list[ConversationSummary]
    page: PageState
    query: str = ""
    total_messages: int = 0
    matched_messages: int = 0
    source_filter_dropped: bool = False
    hint: str = ""


class ConversationViewResponse(BaseModel):
    """A page of turns for one conversation plus its branch structure."""

    conv_id: str
    turns: list[Turn]
    page: PageState
    days: list[DayBucket] = Field(default_factory=list)
    branch_points: list[TreeNode] = Field(default_factory=list)
    selected_path: list[str] = Field(default_factory=list)
    branch_filtered: bool = False
    tree_stats: TreeStats = Field(default_factory=TreeStats)
