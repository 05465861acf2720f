"""FastMCP server for History Lens."""

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_TURN_GAP_SECONDS
from .models import SearchFacets
from .query import get_conversation_view, get_search_stats, search_conversations, select_branch
from .timeutils import parse_date_filter

# Create the MCP server
mcp = FastMCP("history-lens")


def _build_facets(
    vendor: str = "all",
    role: str = "any",
    after: str | None = None,
    before: str | None = None,
    source_ids: list[str] | None = None,
    regex: bool = False,
    title_body: bool = True,
) -> SearchFacets:
    """Turn tool arguments into SearchFacets; bad dates raise ValueError."""
    from_dt = parse_date_filter(after)
    to_dt = parse_date_filter(before)
    return SearchFacets(
        vendor=vendor,
        role=role,
        from_date=from_dt.date() if from_dt else None,
        to_date=to_dt.date() if to_dt else None,
        source_ids=frozenset(source_ids or ()),
        regex=regex,
        title_body=title_body,
    )


def _page_size(value: int | str | None) -> int | str | None:
    if value is None or value == "all":
        return value
    return int(value)


@mcp.tool()
def list_conversations(
    query: str = "",
    vendor: str = "all",
    role: str = "any",
    after: str | None = None,
    before: str | None = None,
    source_ids: list[str] | None = None,
    regex: bool = False,
    title_body: bool = True,
    page: int | None = None,
    page_size: int | str | None = None,
) -> dict:
    """
    List imported AI-assistant conversations, newest first or by search relevance.

    Args:
        query: Text to find in messages (case-insensitive; a pattern when regex is true)
        vendor: chatgpt, claude, gemini, grok, or "all"
        role: user, assistant, tool, system, or "any"
        after: Only messages on/after this date (ISO 8601)
        before: Only messages up to and including this date (ISO 8601)
        source_ids: Restrict to these import sources (empty = all)
        regex: Treat query as a regular expression
        title_body: Also match conversation titles
        page: Page number; resets to 1 whenever the filters change
        page_size: Conversations per page (1-1000 or "all"); remembered across sessions

    Returns:
        Conversation summaries with title, vendor, message count, time range and tags,
        plus pagination info (page, page_count, page_size, total)
    """
    facets = _build_facets(vendor, role, after, before, source_ids, regex, title_body)
    result = search_conversations(
        query=query, facets=facets, page=page, page_size=_page_size(page_size)
    )
    return result.model_dump(mode="json")


@mcp.tool()
def get_conversation(
    conv_id: str,
    query: str = "",
    vendor: str = "all",
    role: str = "any",
    after: str | None = None,
    before: str | None = None,
    source_ids: list[str] | None = None,
    regex: bool = False,
    branch_node_id: str | None = None,
    page: int | None = None,
    page_size: int | str | None = None,
    gap_seconds: float = DEFAULT_TURN_GAP_SECONDS,
) -> dict:
    """
    Show one conversation as turns, following the selected fork branch.

    Args:
        conv_id: Conversation id from list_conversations
        query: Only show messages matching this text
        vendor: Vendor filter, or "all"
        role: Role filter, or "any"
        after: Only messages on/after this date (ISO 8601)
        before: Only messages up to and including this date (ISO 8601)
        source_ids: Restrict to these import sources
        regex: Treat query as a regular expression
        branch_node_id: Tree node or message id to follow; unknown ids keep the current branch
        page: Turn page number
        page_size: Turns per page (1-1000 or "all"); remembered across sessions
        gap_seconds: Silence that splits same-role messages into separate turns (default 420)

    Returns:
        Turns for the page (also grouped by UTC day), branch points, selected branch path,
        tree stats and pagination info
    """
    facets = _build_facets(vendor, role, after, before, source_ids, regex)
    result = get_conversation_view(
        conv_id,
        query=query,
        facets=facets,
        branch_node_id=branch_node_id,
        page=page,
        page_size=_page_size(page_size),
        gap=gap_seconds,
    )
    return result.model_dump(mode="json")


@mcp.tool(name="select_branch")
def select_branch_tool(conv_id: str, node_id: str) -> dict:
    """
    Select the fork branch of a conversation that ends at node_id.

    Args:
        conv_id: Conversation id
        node_id: Tree node id or message id

    Returns:
        The root-to-node path now selected (unchanged if node_id is unknown)
    """
    return {"conv_id": conv_id, "selected_path": select_branch(conv_id, node_id)}


@mcp.tool()
def search_statistics(
    query: str = "",
    vendor: str = "all",
    role: str = "any",
    after: str | None = None,
    before: str | None = None,
    source_ids: list[str] | None = None,
    regex: bool = False,
) -> dict:
    """
    Summarize how many messages and conversations match, by vendor and date range.
    """
    facets = _build_facets(vendor, role, after, before, source_ids, regex)
    return get_search_stats(query=query, facets=facets).model_dump(mode="json")


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
