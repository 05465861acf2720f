"""History Lens - Browse and search multi-vendor AI chat exports."""

from .indexer import ConversationIndex, build_conversation_index, deduplicate_messages, get_index
from .loader import HistoryLensError, PayloadError, ProgressTracker, load_payload, parse_payload
from .models import (
    ConversationAnnotation,
    ConversationSummary,
    DayBucket,
    FilterResult,
    HistoryPayload,
    Message,
    PageState,
    SearchFacets,
    TreeNode,
    Turn,
)
from .pagination import JsonPreferenceStore, MemoryPreferenceStore, Paginator, filter_fingerprint
from .query import (
    filter_messages,
    get_conversation_view,
    rank_messages,
    search_conversations,
)
from .tree import BranchNavigator
from .turns import bucket_by_day, group_turns

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConversationIndex",
    "get_index",
    "deduplicate_messages",
    "build_conversation_index",
    "BranchNavigator",
    "group_turns",
    "bucket_by_day",
    "filter_messages",
    "rank_messages",
    "search_conversations",
    "get_conversation_view",
    "Paginator",
    "MemoryPreferenceStore",
    "JsonPreferenceStore",
    "filter_fingerprint",
    "parse_payload",
    "load_payload",
    "ProgressTracker",
    "HistoryLensError",
    "PayloadError",
    "Message",
    "TreeNode",
    "Turn",
    "DayBucket",
    "ConversationSummary",
    "ConversationAnnotation",
    "SearchFacets",
    "FilterResult",
    "PageState",
    "HistoryPayload",
]
