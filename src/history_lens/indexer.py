"""Deduplication, conversation indexing and the loaded-history facade."""

import functools
import hashlib
import logging
import os
import shlex
from collections.abc import Iterable
from pathlib import Path

from .config import (
    CONVERSATION_PAGE_KEY,
    FIRST_LINE_MAX_CHARS,
    PAYLOAD_ENV,
    PREFERENCES_ENV,
    PREFERENCES_FILE,
    QUERY_COMMAND_ENV,
    SOURCES_ENV,
    TURN_PAGE_KEY,
    UNTITLED,
)
from .loader import acquire_payload, load_payload, load_source_labels
from .models import ConversationAnnotation, ConversationSummary, HistoryPayload, Message, TreeNode
from .pagination import JsonPreferenceStore, MemoryPreferenceStore, Paginator, PreferenceStore
from .timeutils import is_available
from .tree import BranchNavigator

logger = logging.getLogger(__name__)


def deduplicate_messages(messages: Iterable[Message]) -> list[Message]:
    """Collapse messages to one per uid.

    Last occurrence wins: a later record with the same uid replaces the
    earlier one, since later sync passes carry corrected data. The surviving
    record keeps the position where its uid first appeared.
    """
    unique: dict[str, Message] = {}
    for msg in messages:
        unique[msg.uid] = msg
    return list(unique.values())


def _chronological_key(indexed: tuple[int, Message]) -> tuple[bool, float, int]:
    """Earliest available timestamp first; unavailable ones after, in input order."""
    i, msg = indexed
    available = is_available(msg.created_at)
    return (not available, msg.timestamp if available else 0.0, i)


def _first_line(text: str) -> str | None:
    line = text.split("\n", 1)[0].strip()
    if not line:
        return None
    return line[:FIRST_LINE_MAX_CHARS].strip()


def _base_conversation_id(conv_id: str) -> str:
    return conv_id.split(":", 1)[1] if ":" in conv_id else conv_id


def resolve_title(group: list[Message]) -> str:
    """Pick a display title for one conversation's messages.

    Prefers the first title that isn't just the vendor name (some exporters
    write the vendor as a placeholder), then the chronologically first
    message's title, then "(untitled)".
    """
    for msg in group:
        title = msg.title.strip()
        if title and title.lower() != msg.vendor.lower():
            return title

    if group:
        _, earliest = min(enumerate(group), key=_chronological_key)
        if earliest.title.strip():
            return earliest.title.strip()
    return UNTITLED


def _summarize(
    conv_id: str,
    group: list[Message],
    source_labels: dict[str, str],
    annotation: ConversationAnnotation | None,
) -> ConversationSummary:
    timestamps = [m.timestamp for m in group if is_available(m.created_at)]
    first_ts = min(timestamps) if timestamps else 0.0
    last_ts = max(timestamps) if timestamps else 0.0

    _, earliest = min(enumerate(group), key=_chronological_key)

    tags: list[str] = []
    batch = source_labels.get(earliest.source_id)
    if batch:
        tags.append(f"batch:{batch}")

    outlier_count = annotation.outlier_count if annotation else 0
    if outlier_count > 0:
        tags.append(f"outlier:{outlier_count}")

    folder_path = next((m.folder_path for m in group if m.folder_path), "")

    return ConversationSummary(
        conv_id=conv_id,
        title=resolve_title(group),
        vendor=group[0].vendor,
        msg_count=len(group),
        first_ts=first_ts,
        last_ts=last_ts,
        tags=tags,
        folder_path=folder_path,
        first_line=_first_line(earliest.text),
        outlier_count=outlier_count,
        attachment_count=annotation.attachment_count if annotation else 0,
    )


def build_conversation_index(
    messages: Iterable[Message],
    source_labels: dict[str, str] | None = None,
    annotations: dict[str, ConversationAnnotation] | None = None,
) -> list[ConversationSummary]:
    """Summarize deduplicated messages per conversation, most recent first.

    Conversations with no usable timestamp get first_ts = last_ts = 0 and
    sort last. Ties are broken by conv_id so the order is total.
    """
    source_labels = source_labels or {}
    annotations = annotations or {}

    groups: dict[str, list[Message]] = {}
    for msg in messages:
        groups.setdefault(msg.conversation_id, []).append(msg)

    summaries = []
    for conv_id, group in groups.items():
        annotation = annotations.get(conv_id) or annotations.get(_base_conversation_id(conv_id))
        summaries.append(_summarize(conv_id, group, source_labels, annotation))

    summaries.sort(key=lambda s: (-s.last_ts, s.conv_id))
    return summaries


def _get_payload_fingerprint(path: str | None) -> str:
    """Fingerprint of the payload file to detect a re-export."""
    if not path:
        return ""
    try:
        mtime = Path(path).stat().st_mtime
    except OSError:
        return ""
    return hashlib.md5(f"{path}:{mtime}".encode()).hexdigest()


class ConversationIndex:
    """One resolved store payload, deduplicated, plus per-view state.

    Holds the two paginators (conversation list and turn list) and the
    branch selection of each conversation visited since the last load.
    """

    def __init__(
        self,
        payload: HistoryPayload | None = None,
        source_labels: dict[str, str] | None = None,
        preferences: PreferenceStore | None = None,
    ):
        self._payload = HistoryPayload()
        self._messages: list[Message] = []
        self._annotations: dict[str, ConversationAnnotation] = {}
        self._navigators: dict[str, BranchNavigator] = {}
        self._payload_fingerprint: str | None = None
        self._from_file = False
        self.source_labels: dict[str, str] = dict(source_labels or {})
        self.preferences: PreferenceStore = preferences or MemoryPreferenceStore()
        self.conversation_pages: Paginator[ConversationSummary] = Paginator(
            self.preferences, CONVERSATION_PAGE_KEY
        )
        self.turn_pages = Paginator(self.preferences, TURN_PAGE_KEY)
        if payload is not None:
            self.load(payload)

    def load(self, payload: HistoryPayload):
        """Replace the current payload. Branch selections are discarded."""
        self._payload = payload
        self._messages = deduplicate_messages(payload.messages)
        self._annotations = {a.id: a for a in payload.conversations}
        self._navigators = {}
        self._payload_fingerprint = ""
        self._from_file = False
        duplicates = len(payload.messages) - len(self._messages)
        if duplicates:
            logger.info(f"Collapsed {duplicates} duplicate messages by uid")

    @property
    def is_loaded(self) -> bool:
        return self._payload_fingerprint is not None

    def needs_reload(self) -> bool:
        """True if nothing is loaded yet or the payload file changed on disk."""
        if self._payload_fingerprint is None:
            return True
        path = os.environ.get(PAYLOAD_ENV)
        if not path or not self._from_file:
            return False
        return _get_payload_fingerprint(path) != self._payload_fingerprint

    def reload(self):
        """Load from the configured payload file or query command."""
        path = os.environ.get(PAYLOAD_ENV)
        command = os.environ.get(QUERY_COMMAND_ENV)
        if path:
            self.load(load_payload(path))
            self._payload_fingerprint = _get_payload_fingerprint(path)
            self._from_file = True
        elif command:
            self.load(acquire_payload(shlex.split(command)))
            self._payload_fingerprint = command
        else:
            logger.warning(f"Neither {PAYLOAD_ENV} nor {QUERY_COMMAND_ENV} is set; index is empty")
            self.load(HistoryPayload())

    def ensure_loaded(self):
        if self.needs_reload():
            self.reload()

    @property
    def payload(self) -> HistoryPayload:
        return self._payload

    @property
    def messages(self) -> list[Message]:
        """Deduplicated messages in input order."""
        return self._messages

    @property
    def nodes(self) -> list[TreeNode]:
        return self._payload.nodes

    @property
    def annotations(self) -> dict[str, ConversationAnnotation]:
        return self._annotations

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def conversations(self, messages: Iterable[Message] | None = None) -> list[ConversationSummary]:
        """Conversation summaries over messages (default: everything loaded)."""
        return build_conversation_index(
            self._messages if messages is None else messages,
            self.source_labels,
            self._annotations,
        )

    def get_messages_by_conversation(
        self, conv_id: str, messages: Iterable[Message] | None = None
    ) -> list[Message]:
        """Messages of one conversation, oldest first."""
        source = self._messages if messages is None else messages
        return sorted(
            (m for m in source if m.conversation_id == conv_id),
            key=lambda m: m.timestamp,
        )

    def navigator(self, conv_id: str) -> BranchNavigator:
        """Branch navigator for conv_id; keeps its selection across calls."""
        if conv_id not in self._navigators:
            nodes = self._payload.nodes if self._payload.has_tree else []
            self._navigators[conv_id] = BranchNavigator.for_conversation(nodes, conv_id)
        return self._navigators[conv_id]


@functools.lru_cache(maxsize=1)
def get_index() -> ConversationIndex:
    """Get or create the global conversation index (singleton via lru_cache)."""
    prefs_path = os.environ.get(PREFERENCES_ENV)
    return ConversationIndex(
        source_labels=load_source_labels(os.environ.get(SOURCES_ENV)),
        preferences=JsonPreferenceStore(Path(prefs_path) if prefs_path else PREFERENCES_FILE),
    )
