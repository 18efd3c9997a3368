"""MCP server for prompt search and management."""
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from promptverse.analytics import SearchAnalytics, SearchLogStore
from promptverse.client import PromptApiClient, PromptApiError
from promptverse.config import get_config
from promptverse.matching import highlight_matches
from promptverse.search import PromptSearchEngine, SearchOptions
from promptverse.store import PromptStore
from promptverse.virtual_list import MemoryHost, VirtualScroller


# Composition root: every shared service is created here, lazily
_store: Optional[PromptStore] = None
_api_client: Optional[PromptApiClient] = None
_analytics = SearchAnalytics()
_search_engine: Optional[PromptSearchEngine] = None
_search_log: Optional[SearchLogStore] = None
_search_log_lock = asyncio.Lock()


def get_prompt_store() -> PromptStore:
    """Get or create the local JSON prompt store."""
    global _store

    if _store is None:
        _store = PromptStore(get_config().data_dir)

    return _store


def get_api_client() -> Optional[PromptApiClient]:
    """Get the remote API client, or None when no API URL is configured."""
    global _api_client

    config = get_config()
    if _api_client is None and config.api_url:
        _api_client = PromptApiClient(config.api_url, timeout=config.api_timeout)

    return _api_client


def get_search_engine() -> PromptSearchEngine:
    """Get or create the search engine (owns the result cache)."""
    global _search_engine

    if _search_engine is None:
        _search_engine = PromptSearchEngine(get_config().search, analytics=_analytics)
        _search_engine.init()

    return _search_engine


async def get_search_log() -> SearchLogStore:
    """Get or create the initialized search log store."""
    global _search_log

    async with _search_log_lock:
        if _search_log is None:
            # Published only once initialized; a failed attempt is retried next call
            log = SearchLogStore(get_config().resolved_search_log_db_path)
            try:
                await log.initialize()
            except Exception:
                await log.close()
                raise
            _search_log = log

    return _search_log


async def shutdown() -> None:
    """Release every service created by this module."""
    global _api_client, _search_engine, _search_log

    if _search_engine is not None:
        _search_engine.dispose()
        _search_engine = None
    if _search_log is not None:
        await _search_log.close()
        _search_log = None
    if _api_client is not None:
        await _api_client.close()
        _api_client = None


# ---------------------------------------------------------------------------
# Data access (remote API when configured, local files otherwise)
# ---------------------------------------------------------------------------

async def load_prompts() -> List[Dict[str, Any]]:
    """Load every prompt. Failures yield an empty list.

    Returns:
        List of prompt dicts
    """
    client = get_api_client()
    try:
        if client is not None:
            return await client.list_prompts()
        return get_prompt_store().list_prompts(with_relations=False)
    except PromptApiError as e:
        print(f"[PromptApi] Error loading prompts: {e}", file=sys.stderr)
        return []
    except Exception as e:
        print(f"Error loading prompts: {e}", file=sys.stderr)
        return []


async def flush_search_log() -> int:
    """Persist buffered analytics records. Never raises."""
    records = _analytics.drain()
    if not records:
        return 0
    try:
        log = await get_search_log()
        return await log.record_many(records)
    except Exception as e:
        print(f"[Analytics] Could not persist search log: {e}", file=sys.stderr)
        return 0


def _text(text: str) -> List[TextContent]:
    return [TextContent(type="text", text=text)]


def _json(data: Any) -> List[TextContent]:
    return _text(json.dumps(data, indent=2, ensure_ascii=False))


def _invalidate_search_cache() -> None:
    get_search_engine().cache.clear()


def _build_filters(
    category: Optional[str] = None,
    tags: Optional[List[str]] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    if category:
        filters["category"] = category
    if tags:
        filters["tags"] = list(tags)
    if start_date or end_date:
        date_range = {}
        if start_date:
            date_range["start_date"] = start_date
        if end_date:
            date_range["end_date"] = end_date
        filters["date_range"] = date_range
    return filters


def _summarize(prompt: Dict[str, Any], highlight_terms: List[str]) -> Dict[str, Any]:
    summary = {
        key: prompt.get(key)
        for key in ("id", "title", "description", "category", "tags", "author", "updated_at", "created_at")
        if key in prompt
    }
    summary["highlighted_title"] = highlight_matches(prompt.get("title", ""), highlight_terms)
    return summary


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------

async def search_prompts_tool(
    query: str = "",
    category: Optional[str] = None,
    tags: Optional[List[str]] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    fuzzy: bool = False,
    limit: int = 20,
) -> List[TextContent]:
    """Tool handler for search_prompts.

    Returns:
        List with one TextContent holding ranked results as JSON
    """
    prompts = await load_prompts()
    if not prompts:
        return _text("No prompts available.")

    options = SearchOptions(
        filters=_build_filters(category, tags, start_date, end_date),
        fuzzy=fuzzy,
        limit=limit,
    )
    response = get_search_engine().search(prompts, query, options)
    await flush_search_log()

    if not response.results:
        return _text(f"No prompts found matching query: {query}" if query else "No prompts match the given filters.")

    return _json({
        "count": len(response.results),
        "highlightTerms": response.highlight_terms,
        "results": [_summarize(p, response.highlight_terms) for p in response.results],
    })


async def browse_prompts_tool(
    query: str = "",
    scroll_top: float = 0.0,
    viewport_height: float = 600.0,
    item_height: Optional[float] = None,
    buffer_size: Optional[int] = None,
    fuzzy: bool = False,
) -> List[TextContent]:
    """Tool handler for browse_prompts: one virtualized window of results."""
    prompts = await load_prompts()
    response = get_search_engine().search(prompts, query, SearchOptions(fuzzy=fuzzy))
    await flush_search_log()

    renderer = get_config().renderer
    host = MemoryHost(
        viewport_height=viewport_height,
        render=lambda prompt, index: _summarize(prompt, response.highlight_terms),
    )
    host.scroll_top = scroll_top
    scroller = VirtualScroller(
        host,
        response.results,
        item_height=item_height,
        buffer_size=buffer_size,
        config=renderer,
    )
    try:
        start, end = scroller.render()
        window = [
            {"index": element["index"], "offset": element["offset"], "prompt": element["body"]}
            for element in host.visible_elements()
        ]
        return _json({
            "total": len(response.results),
            "total_height": scroller.total_height,
            "start_index": start,
            "end_index": end,
            "items": window,
        })
    finally:
        scroller.destroy()


async def list_prompts_tool() -> List[TextContent]:
    prompts = await load_prompts()
    if not prompts:
        return _text("No prompts available.")
    return _json(prompts)


async def get_prompt_tool(prompt_id: str) -> List[TextContent]:
    client = get_api_client()
    try:
        if client is not None:
            prompt = await client.get_prompt(prompt_id)
        else:
            prompt = get_prompt_store().get_prompt(prompt_id)
    except PromptApiError as e:
        return _text(f"Error: {e}")

    if prompt is None:
        return _text(f"Prompt not found: {prompt_id}")
    return _json(prompt)


async def create_prompt_tool(data: Dict[str, Any]) -> List[TextContent]:
    client = get_api_client()
    try:
        if client is not None:
            prompt = await client.create_prompt(data)
        else:
            prompt = get_prompt_store().create_prompt(data)
    except (ValueError, PromptApiError) as e:
        return _text(f"Error: {e}")

    _invalidate_search_cache()
    return _json(prompt)


async def update_prompt_tool(prompt_id: str, changes: Dict[str, Any]) -> List[TextContent]:
    client = get_api_client()
    try:
        if client is not None:
            prompt = await client.update_prompt(prompt_id, changes)
        else:
            prompt = get_prompt_store().update_prompt(prompt_id, changes)
    except PromptApiError as e:
        return _text(f"Error: {e}")

    if prompt is None:
        return _text(f"Prompt not found: {prompt_id}")

    _invalidate_search_cache()
    return _json(prompt)


def _local_only(action: str) -> Optional[List[TextContent]]:
    if get_api_client() is not None:
        return _text(f"Error: {action} is only available for the local prompt store.")
    return None


async def delete_prompt_tool(prompt_id: str) -> List[TextContent]:
    blocked = _local_only("delete_prompt")
    if blocked:
        return blocked

    if not get_prompt_store().delete_prompt(prompt_id):
        return _text(f"Prompt not found: {prompt_id}")

    _invalidate_search_cache()
    return _json({"ok": True, "deleted": prompt_id})


async def list_categories_tool() -> List[TextContent]:
    client = get_api_client()
    try:
        categories = await client.list_categories() if client else get_prompt_store().list_categories()
    except PromptApiError as e:
        return _text(f"Error: {e}")
    return _json(categories)


async def list_tags_tool() -> List[TextContent]:
    client = get_api_client()
    try:
        tags = await client.list_tags() if client else get_prompt_store().list_tags()
    except PromptApiError as e:
        return _text(f"Error: {e}")
    return _json(tags)


async def add_category_tool(name: str) -> List[TextContent]:
    blocked = _local_only("add_category")
    if blocked:
        return blocked
    try:
        return _json(get_prompt_store().add_category(name))
    except ValueError as e:
        return _text(f"Error: {e}")


async def add_tag_tool(name: str) -> List[TextContent]:
    blocked = _local_only("add_tag")
    if blocked:
        return blocked
    try:
        return _json(get_prompt_store().add_tag(name))
    except ValueError as e:
        return _text(f"Error: {e}")


async def add_comment_tool(prompt_id: str, content: str, author: Optional[str] = None) -> List[TextContent]:
    blocked = _local_only("add_comment")
    if blocked:
        return blocked

    store = get_prompt_store()
    if store.get_prompt(prompt_id, with_relations=False) is None:
        return _text(f"Prompt not found: {prompt_id}")
    try:
        return _json(store.add_comment(prompt_id, content, author))
    except ValueError as e:
        return _text(f"Error: {e}")


async def add_result_tool(prompt_id: str, content: str, author: Optional[str] = None) -> List[TextContent]:
    blocked = _local_only("add_result")
    if blocked:
        return blocked

    store = get_prompt_store()
    if store.get_prompt(prompt_id, with_relations=False) is None:
        return _text(f"Prompt not found: {prompt_id}")
    try:
        return _json(store.add_result(prompt_id, content, author))
    except ValueError as e:
        return _text(f"Error: {e}")


async def get_search_history_tool(limit: int = 20) -> List[TextContent]:
    log = await get_search_log()
    history = await log.get_history(limit=limit)
    if not history:
        return _text("No searches recorded yet.")
    return _json(history)


async def clear_search_cache_tool() -> List[TextContent]:
    get_search_engine().clear_cache()
    return _json({"ok": True})


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

_PROMPT_ID = {"type": "string", "description": "Prompt ID"}

TOOLS = [
    Tool(
        name="search_prompts",
        description="Search prompts by relevance with optional category, tag (all required) and date filters. An empty query lists matching prompts newest first.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Free text query"},
                "category": {"type": "string", "description": "Category ID to restrict to"},
                "tags": {"type": "array", "items": {"type": "string"}, "description": "Tag IDs; prompts must carry all of them"},
                "start_date": {"type": "string", "description": "ISO date, inclusive"},
                "end_date": {"type": "string", "description": "ISO date, inclusive through end of day"},
                "fuzzy": {"type": "boolean", "description": "Tolerate small typos", "default": False},
                "limit": {"type": "integer", "description": "Maximum results", "default": 20},
            },
        },
    ),
    Tool(
        name="browse_prompts",
        description="Return the virtualized window of search results visible at a scroll position.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "scroll_top": {"type": "number", "default": 0},
                "viewport_height": {"type": "number", "default": 600},
                "item_height": {"type": "number"},
                "buffer_size": {"type": "integer"},
                "fuzzy": {"type": "boolean", "default": False},
            },
        },
    ),
    Tool(
        name="list_prompts",
        description="List every prompt.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_prompt",
        description="Get one prompt with its comments and results.",
        inputSchema={"type": "object", "properties": {"prompt_id": _PROMPT_ID}, "required": ["prompt_id"]},
    ),
    Tool(
        name="create_prompt",
        description="Create a prompt. title, content, category and tags are required.",
        inputSchema={
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "content": {"type": "string"},
                "description": {"type": "string"},
                "category": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "author": {"type": "string"},
            },
            "required": ["title", "content", "category", "tags"],
        },
    ),
    Tool(
        name="update_prompt",
        description="Update fields of an existing prompt.",
        inputSchema={
            "type": "object",
            "properties": {
                "prompt_id": _PROMPT_ID,
                "title": {"type": "string"},
                "content": {"type": "string"},
                "description": {"type": "string"},
                "category": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "author": {"type": "string"},
            },
            "required": ["prompt_id"],
        },
    ),
    Tool(
        name="delete_prompt",
        description="Delete a prompt together with its comments and results.",
        inputSchema={"type": "object", "properties": {"prompt_id": _PROMPT_ID}, "required": ["prompt_id"]},
    ),
    Tool(
        name="list_categories",
        description="List all categories.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="add_category",
        description="Create a category.",
        inputSchema={"type": "object", "properties": {"name": {"type": "string"}}, "required": ["name"]},
    ),
    Tool(
        name="list_tags",
        description="List all tags.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="add_tag",
        description="Create a tag (no commas allowed).",
        inputSchema={"type": "object", "properties": {"name": {"type": "string"}}, "required": ["name"]},
    ),
    Tool(
        name="add_comment",
        description="Comment on a prompt.",
        inputSchema={
            "type": "object",
            "properties": {"prompt_id": _PROMPT_ID, "content": {"type": "string"}, "author": {"type": "string"}},
            "required": ["prompt_id", "content"],
        },
    ),
    Tool(
        name="add_result",
        description="Attach an example result (model output) to a prompt.",
        inputSchema={
            "type": "object",
            "properties": {"prompt_id": _PROMPT_ID, "content": {"type": "string"}, "author": {"type": "string"}},
            "required": ["prompt_id", "content"],
        },
    ),
    Tool(
        name="get_search_history",
        description="Recent searches, newest first.",
        inputSchema={"type": "object", "properties": {"limit": {"type": "integer", "default": 20}}},
    ),
    Tool(
        name="clear_search_cache",
        description="Drop all cached search results.",
        inputSchema={"type": "object", "properties": {}},
    ),
]

_PROMPT_FIELDS = ("title", "content", "description", "category", "tags", "author")


async def dispatch_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
    """Route a tool call to its handler."""
    arguments = arguments or {}

    if name == "search_prompts":
        return await search_prompts_tool(
            query=arguments.get("query", ""),
            category=arguments.get("category"),
            tags=arguments.get("tags"),
            start_date=arguments.get("start_date"),
            end_date=arguments.get("end_date"),
            fuzzy=bool(arguments.get("fuzzy", False)),
            limit=int(arguments.get("limit", 20)),
        )
    if name == "browse_prompts":
        return await browse_prompts_tool(
            query=arguments.get("query", ""),
            scroll_top=float(arguments.get("scroll_top", 0)),
            viewport_height=float(arguments.get("viewport_height", 600)),
            item_height=arguments.get("item_height"),
            buffer_size=arguments.get("buffer_size"),
            fuzzy=bool(arguments.get("fuzzy", False)),
        )
    if name == "list_prompts":
        return await list_prompts_tool()
    if name == "list_categories":
        return await list_categories_tool()
    if name == "list_tags":
        return await list_tags_tool()
    if name == "clear_search_cache":
        return await clear_search_cache_tool()
    if name == "get_search_history":
        return await get_search_history_tool(limit=int(arguments.get("limit", 20)))
    if name == "create_prompt":
        data = {key: arguments[key] for key in _PROMPT_FIELDS if key in arguments}
        return await create_prompt_tool(data)
    if name in ("add_category", "add_tag"):
        if not arguments.get("name"):
            return _text("Error: 'name' parameter is required")
        handler = add_category_tool if name == "add_category" else add_tag_tool
        return await handler(arguments["name"])

    prompt_id = arguments.get("prompt_id")
    if name in ("get_prompt", "update_prompt", "delete_prompt", "add_comment", "add_result"):
        if not prompt_id:
            return _text("Error: 'prompt_id' parameter is required")

    if name == "get_prompt":
        return await get_prompt_tool(prompt_id)
    if name == "update_prompt":
        changes = {key: arguments[key] for key in _PROMPT_FIELDS if key in arguments}
        return await update_prompt_tool(prompt_id, changes)
    if name == "delete_prompt":
        return await delete_prompt_tool(prompt_id)
    if name in ("add_comment", "add_result"):
        if not arguments.get("content"):
            return _text("Error: 'content' parameter is required")
        handler = add_comment_tool if name == "add_comment" else add_result_tool
        return await handler(prompt_id, arguments["content"], arguments.get("author"))

    raise ValueError(f"Unknown tool: {name}")


def create_server() -> Server:
    """Create and configure the MCP server.

    Returns:
        Configured Server instance
    """
    server = Server("promptverse")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        return await dispatch_tool(name, arguments)

    return server


async def main():
    """Main entry point for the MCP server."""
    server = create_server()

    try:
        async with stdio_server() as (read_stream, write_stream):
            initialization_options = server.create_initialization_options()
            await server.run(read_stream, write_stream, initialization_options)
    finally:
        await shutdown()
