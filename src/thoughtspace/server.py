"""MCP server exposing the thought space to agents."""

import asyncio
import json
import logging
import sys
import traceback

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import ThoughtSpaceConfig
from .constants import (
    DEFAULT_HIGHWAY_LIMIT,
    DEFAULT_HIGHWAY_MIN_ACCESS,
    DEFAULT_HIGHWAY_MIN_USERS,
    DEFAULT_LINEAGE_DEPTH,
)
from .engine import ThoughtSpace
from .errors import ThoughtSpaceError, ValidationError

logger = logging.getLogger("thoughtspace")

TOOLS = [
    Tool(
        name="query_brain",
        description=(
            "Share what you're working on or ask a question. Substantive statements "
            "(over 50 characters, not a bare question) are remembered automatically; "
            "related thoughts from all agents come back ranked by relevance and usage. "
            "Pass session_id from a previous response to keep a session together."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "prompt": {"type": "string", "description": "What you're learning or asking"},
                "context": {"type": "string", "description": "Optional context (max 2000 chars)"},
                "session_id": {"type": "string", "description": "Session id from a previous call"},
                "refines": {"type": "string", "description": "Id of a thought this refines"},
                "consolidates": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Ids (2+) of thoughts this consolidates",
                },
                "full_content": {"type": "boolean", "description": "Return full thought content"},
            },
            "required": ["prompt"],
        },
    ),
    Tool(
        name="contribute_to_brain",
        description=(
            "Store a thought directly. Use thought_type 'refinement' (one source) or "
            "'consolidation' (2+ sources) to build on existing thoughts."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "content": {"type": "string"},
                "thought_type": {
                    "type": "string",
                    "enum": ["original", "refinement", "consolidation"],
                },
                "source_ids": {"type": "array", "items": {"type": "string"}},
                "tags": {"type": "array", "items": {"type": "string"}},
                "context": {"type": "string"},
                "metadata": {"type": "object", "description": "Classification fields"},
            },
            "required": ["content"],
        },
    ),
    Tool(
        name="get_lineage",
        description="Show a thought's ancestors and descendants, with supersession markers.",
        inputSchema={
            "type": "object",
            "properties": {
                "thought_id": {"type": "string"},
                "max_depth": {"type": "integer", "default": DEFAULT_LINEAGE_DEPTH},
            },
            "required": ["thought_id"],
        },
    ),
    Tool(
        name="get_highways",
        description="Most travelled thoughts (many accesses by several agents), optionally near a context.",
        inputSchema={
            "type": "object",
            "properties": {
                "min_access": {"type": "integer", "default": DEFAULT_HIGHWAY_MIN_ACCESS},
                "min_users": {"type": "integer", "default": DEFAULT_HIGHWAY_MIN_USERS},
                "limit": {"type": "integer", "default": DEFAULT_HIGHWAY_LIMIT},
                "context": {"type": "string"},
            },
        },
    ),
    Tool(
        name="patch_thought_metadata",
        description=(
            "Update a thought's classification (thought_category, topic, temporal_scope, "
            "quality_flags, corrected_fact, correct_fact, supersedes). Content never changes."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "thought_id": {"type": "string"},
                "metadata": {"type": "object"},
            },
            "required": ["thought_id", "metadata"],
        },
    ),
    Tool(
        name="list_uncategorized",
        description="Thoughts that have no category yet, for classification.",
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "default": 20},
                "offset": {"type": "integer", "default": 0},
            },
        },
    ),
    Tool(
        name="run_decay_pass",
        description="Decay the pheromone weight of idle thoughts once (normally hourly).",
        inputSchema={"type": "object", "properties": {}},
    ),
]


def _require(arguments: dict, key: str):
    if key not in arguments or arguments[key] in (None, ""):
        raise ValidationError(f"{key} is required")
    return arguments[key]


def dispatch_tool(
    space: ThoughtSpace,
    name: str,
    arguments: dict,
    agent_id: str,
    agent_name: str,
):
    """Run one tool call and return a JSON-ready result.

    Raises:
        ThoughtSpaceError: Passed through for the caller to render
    """
    if name == "query_brain":
        response = space.memory(
            prompt=_require(arguments, "prompt"),
            agent_id=agent_id,
            agent_name=agent_name,
            session_id=arguments.get("session_id"),
            context=arguments.get("context"),
            refines=arguments.get("refines"),
            consolidates=arguments.get("consolidates"),
            full_content=bool(arguments.get("full_content", False)),
        )
        return response.model_dump(mode="json")

    elif name == "contribute_to_brain":
        result = space.contribute(
            content=_require(arguments, "content"),
            contributor_id=agent_id,
            contributor_name=agent_name,
            thought_type=arguments.get("thought_type", "original"),
            source_ids=arguments.get("source_ids"),
            tags=arguments.get("tags"),
            context=arguments.get("context"),
            metadata=arguments.get("metadata"),
        )
        return result.model_dump(mode="json")

    elif name == "get_lineage":
        result = space.get_lineage(
            _require(arguments, "thought_id"),
            max_depth=arguments.get("max_depth", DEFAULT_LINEAGE_DEPTH),
        )
        return result.model_dump(mode="json")

    elif name == "get_highways":
        found = space.get_highways(
            min_access=arguments.get("min_access", DEFAULT_HIGHWAY_MIN_ACCESS),
            min_users=arguments.get("min_users", DEFAULT_HIGHWAY_MIN_USERS),
            limit=arguments.get("limit", DEFAULT_HIGHWAY_LIMIT),
            context=arguments.get("context"),
        )
        return [h.model_dump(mode="json") for h in found]

    elif name == "patch_thought_metadata":
        metadata = _require(arguments, "metadata")
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object", code="INVALID_METADATA")
        thought = space.patch_metadata(_require(arguments, "thought_id"), metadata)
        return thought.model_dump(mode="json")

    elif name == "list_uncategorized":
        thoughts = space.list_uncategorized(
            limit=arguments.get("limit", 20),
            offset=arguments.get("offset", 0),
        )
        return {
            "thoughts": [t.model_dump(mode="json") for t in thoughts],
            "count": len(thoughts),
        }

    elif name == "run_decay_pass":
        return {"updated": space.run_decay_pass()}

    raise ValidationError(f"Unknown tool: {name}")


def create_server(space: ThoughtSpace, agent_id: str, agent_name: str) -> Server:
    """Build an MCP server bound to one thought space and agent identity."""
    server = Server("thoughtspace")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        logger.info(f"Tool call: {name}")
        logger.debug(f"Arguments: {arguments}")
        try:
            result = dispatch_tool(space, name, arguments or {}, agent_id, agent_name)
        except ThoughtSpaceError as e:
            level = logging.WARNING if isinstance(e, ValidationError) else logging.ERROR
            logger.log(level, f"Tool {name} failed: {e.code}: {e.message}")
            result = e.to_dict()
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


def setup_logging(config: ThoughtSpaceConfig):
    config.data_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler(sys.stderr),
        ],
    )


def main():
    """Entry point for the MCP server."""
    config = ThoughtSpaceConfig.from_env()
    setup_logging(config)
    logger.info(
        f"Thoughtspace MCP server starting (data_dir={config.data_dir}, "
        f"backend={config.backend}, agent={config.agent_id})"
    )
    space = ThoughtSpace.from_config(config)
    space.start()
    try:
        asyncio.run(_run_server(create_server(space, config.agent_id, config.agent_name)))
    except Exception as e:
        logger.error(f"Server crashed: {e}")
        logger.error(traceback.format_exc())
        raise
    finally:
        space.close()


async def _run_server(server: Server):
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


if __name__ == "__main__":
    main()
