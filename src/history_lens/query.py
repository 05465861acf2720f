"""Facet filtering, ranked ordering and paginated views."""

import logging
import re
from collections import Counter
from collections.abc import Callable, Iterable, Sequence

import numpy as np

from .config import ALL_VENDORS, ANY_ROLE, DEFAULT_TURN_GAP_SECONDS, SECONDS_PER_DAY, TIMESTAMP_SENTINEL
from .indexer import ConversationIndex, get_index
from .models import (
    ConversationListResponse,
    ConversationSummary,
    ConversationViewResponse,
    FilterResult,
    Message,
    PageSize,
    SearchFacets,
    SearchStats,
)
from .pagination import filter_fingerprint
from .timeutils import parse_date_filter
from .turns import bucket_by_day, group_turns

logger = logging.getLogger(__name__)


def _date_bounds(facets: SearchFacets) -> tuple[float | None, float | None]:
    """[from, to + 1 day) as epoch seconds; the end date is inclusive."""
    lower = upper = None
    if facets.from_date is not None:
        lower = parse_date_filter(facets.from_date).timestamp()
    if facets.to_date is not None:
        upper = parse_date_filter(facets.to_date).timestamp() + SECONDS_PER_DAY
    return lower, upper


def _text_matcher(query: str, facets: SearchFacets) -> Callable[[Message], bool]:
    """Case-insensitive substring or regex matcher over text (and title).

    A pattern that does not compile is searched for literally instead, so a
    half-typed expression still finds the text typed so far.
    """
    pattern = None
    if facets.regex:
        try:
            pattern = re.compile(query, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"Invalid search pattern {query!r}, matching it literally: {e}")

    if pattern is not None:
        def matches(m: Message) -> bool:
            if pattern.search(m.text):
                return True
            return facets.title_body and bool(pattern.search(m.title))

        return matches

    needle = query.lower()

    def contains(m: Message) -> bool:
        if needle in m.text.lower():
            return True
        return facets.title_body and needle in m.title.lower()

    return contains


def _mask(messages: Sequence[Message], predicate: Callable[[Message], bool]) -> np.ndarray:
    return np.fromiter((predicate(m) for m in messages), dtype=bool, count=len(messages))


def filter_messages(
    messages: Iterable[Message],
    facets: SearchFacets | None = None,
    query: str = "",
    text_delegated: bool = False,
) -> FilterResult:
    """Apply vendor, role, date, text and source facets, keeping input order.

    When text_delegated is set the store has already matched the query and
    only the remaining facets are applied.

    If the source restriction alone would turn a non-empty candidate set into
    an empty one it is skipped and the result is flagged with
    source_filter_dropped. Stale source mappings would otherwise hide all data.
    """
    facets = facets or SearchFacets()
    messages = list(messages)
    if not messages:
        return FilterResult()

    mask = np.ones(len(messages), dtype=bool)

    if facets.vendor != ALL_VENDORS:
        mask &= _mask(messages, lambda m: m.vendor == facets.vendor)
    if facets.role != ANY_ROLE:
        mask &= _mask(messages, lambda m: m.role == facets.role)

    lower, upper = _date_bounds(facets)
    if lower is not None or upper is not None:
        timestamps = np.array([m.timestamp for m in messages], dtype=np.float64)
        mask &= timestamps > TIMESTAMP_SENTINEL
        if lower is not None:
            mask &= timestamps >= lower
        if upper is not None:
            mask &= timestamps < upper

    query = (query or "").strip()
    if query and not text_delegated:
        mask &= _mask(messages, _text_matcher(query, facets))

    dropped = False
    if facets.source_ids:
        in_sources = _mask(messages, lambda m: m.source_id in facets.source_ids)
        if mask.any() and not (mask & in_sources).any():
            dropped = True
            logger.warning(
                f"Source filter {sorted(facets.source_ids)} matched nothing; showing all sources"
            )
        else:
            mask &= in_sources

    return FilterResult(
        messages=[m for m, keep in zip(messages, mask) if keep],
        source_filter_dropped=dropped,
    )


def rank_messages(messages: Sequence[Message]) -> list[Message]:
    """Order messages for display.

    With an external rank on any message: rank descending (missing counts as
    0), then created_at ascending. Without: created_at ascending. uid breaks
    any remaining tie, so identical inputs always give identical order.
    """
    if not messages:
        return []

    # lexsort is stable, so presorting by uid makes it the final tie-breaker
    by_uid = sorted(messages, key=lambda m: m.uid)
    timestamps = np.array([m.timestamp for m in by_uid], dtype=np.float64)

    if any(m.rank is not None for m in by_uid):
        ranks = np.array([m.rank if m.rank is not None else 0.0 for m in by_uid], dtype=np.float64)
        order = np.lexsort((timestamps, -ranks))
    else:
        order = np.lexsort((timestamps,))

    return [by_uid[i] for i in order]


def rank_conversations(
    summaries: Sequence[ConversationSummary], messages: Iterable[Message]
) -> list[ConversationSummary]:
    """Order conversations by their best-ranked message.

    Falls back to the given (recency) order when no message carries a rank.
    """
    best: dict[str, float] = {}
    for m in messages:
        if m.rank is not None:
            best[m.conversation_id] = max(best.get(m.conversation_id, m.rank), m.rank)

    if not best:
        return list(summaries)

    return sorted(summaries, key=lambda s: (-best.get(s.conv_id, 0.0), s.first_ts, s.conv_id))


def search_stats(messages: Sequence[Message], matched: Sequence[Message]) -> SearchStats:
    """Totals, vendor breakdown and date range of a search."""
    timestamps = [m.timestamp for m in matched if m.timestamp > TIMESTAMP_SENTINEL]
    return SearchStats(
        total_messages=len(messages),
        matching_messages=len(matched),
        matching_conversations=len({m.conversation_id for m in matched}),
        vendor_counts=dict(Counter(m.vendor for m in matched)),
        first_ts=min(timestamps) if timestamps else 0.0,
        last_ts=max(timestamps) if timestamps else 0.0,
    )


def _resolve_index(index: ConversationIndex | None) -> ConversationIndex:
    if index is not None:
        return index
    index = get_index()
    index.ensure_loaded()
    return index


def search_conversations(
    query: str = "",
    facets: SearchFacets | None = None,
    page: int | None = None,
    page_size: PageSize | None = None,
    text_delegated: bool = False,
    index: ConversationIndex | None = None,
) -> ConversationListResponse:
    """
    List conversations containing messages that match the query and facets.

    Args:
        query: Search string (substring, or pattern when facets.regex is set)
        facets: Vendor/role/date/source filters
        page: Page to show; omitted keeps the current page unless the filter changed
        page_size: New page size, persisted for future sessions
        text_delegated: The store already matched the query; skip local text matching
        index: Index to use instead of the global one

    Returns:
        ConversationListResponse with one page of summaries and pagination state
    """
    index = _resolve_index(index)
    facets = facets or SearchFacets()

    result = filter_messages(index.messages, facets, query, text_delegated)
    ranked = rank_messages(result.messages)
    summaries = index.conversations(ranked)
    if query.strip():
        summaries = rank_conversations(summaries, ranked)

    pages = index.conversation_pages
    pages.update(summaries, filter_fingerprint(query, facets))
    if page_size is not None:
        pages.set_page_size(page_size)
    if page is not None:
        pages.goto(page)

    state = pages.state
    shown = pages.items
    return ConversationListResponse(
        conversations=shown,
        page=state,
        query=query,
        total_messages=index.message_count,
        matched_messages=len(result.messages),
        source_filter_dropped=result.source_filter_dropped,
        hint=_generate_hint(state.total, state.page, state.page_count, len(shown), pages.page_size),
    )


def get_conversation_view(
    conv_id: str,
    query: str = "",
    facets: SearchFacets | None = None,
    branch_node_id: str | None = None,
    page: int | None = None,
    page_size: PageSize | None = None,
    gap: float = DEFAULT_TURN_GAP_SECONDS,
    text_delegated: bool = False,
    index: ConversationIndex | None = None,
) -> ConversationViewResponse:
    """
    Turns of one conversation, restricted to the selected branch.

    Args:
        conv_id: Conversation id ("vendor:source-id")
        query: Active search string; only matching messages are shown
        facets: Active filters
        branch_node_id: Node (or message) id whose branch to select; unknown ids keep the current branch
        page: Turn page to show
        page_size: New turn page size, persisted for future sessions
        gap: Seconds of silence that split same-role messages into separate turns
        text_delegated: The store already matched the query
        index: Index to use instead of the global one
    """
    index = _resolve_index(index)
    facets = facets or SearchFacets()

    result = filter_messages(index.messages, facets, query, text_delegated)
    conv_messages = index.get_messages_by_conversation(conv_id, result.messages)

    navigator = index.navigator(conv_id)
    if branch_node_id:
        navigator.select(branch_node_id)
    turns = group_turns(navigator.filter_messages(conv_messages), gap)

    pages = index.turn_pages
    pages.update(
        turns,
        filter_fingerprint(
            query, facets, conv=conv_id, branch=",".join(navigator.selected_path)
        ),
    )
    if page_size is not None:
        pages.set_page_size(page_size)
    if page is not None:
        pages.goto(page)

    shown = pages.items
    return ConversationViewResponse(
        conv_id=conv_id,
        turns=shown,
        page=pages.state,
        days=bucket_by_day(shown),
        branch_points=navigator.branch_points(),
        selected_path=list(navigator.selected_path),
        branch_filtered=navigator.branch_filtered,
        tree_stats=navigator.stats(),
    )


def select_branch(conv_id: str, node_id: str, index: ConversationIndex | None = None) -> list[str]:
    """Select a branch of conv_id; returns the (possibly unchanged) root-to-node path."""
    return _resolve_index(index).navigator(conv_id).select(node_id)


def get_search_stats(
    query: str = "",
    facets: SearchFacets | None = None,
    text_delegated: bool = False,
    index: ConversationIndex | None = None,
) -> SearchStats:
    index = _resolve_index(index)
    result = filter_messages(index.messages, facets, query, text_delegated)
    return search_stats(index.messages, result.messages)


def _generate_hint(
    total: int,
    page: int,
    page_count: int,
    results_count: int,
    page_size: PageSize,
) -> str:
    """Generate a helpful hint about pagination and filters."""
    if total == 0:
        return "No conversations match. Try a broader query or clear some filters."

    if page_count <= 1:
        if total == 1:
            return "Showing the only matching conversation."
        return f"Showing all {total} conversations."

    start = (page - 1) * page_size + 1
    end = start + results_count - 1
    if page < page_count:
        return (
            f"Showing {start}-{end} of {total} conversations (page {page}/{page_count}). "
            f"To see more, request page: {page + 1}."
        )
    return f"Showing {start}-{end} of {total} conversations (final page)."
