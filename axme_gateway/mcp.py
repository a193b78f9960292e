"""JSON-RPC 2.0 envelopes and tool-argument pre-validation for the MCP endpoint."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

JSONRPC_VERSION = "2.0"


class ToolSchemaCache:
    """Tool name -> ``inputSchema`` mapping filled from ``tools/list``.

    Entries are only ever added or overwritten with an equivalent schema,
    so concurrent tasks on one event loop can share an instance. Nothing
    expires; a schema can go stale if the gateway changes a tool.
    """

    def __init__(self) -> None:
        self._schemas: dict[str, dict[str, Any]] = {}

    def get(self, name: str) -> dict[str, Any] | None:
        return self._schemas.get(name)

    def remember(self, name: str, schema: dict[str, Any]) -> None:
        self._schemas[name] = schema

    def remember_tools(self, tools: Any) -> int:
        if not isinstance(tools, list):
            return 0
        stored = 0
        for tool in tools:
            if not isinstance(tool, dict):
                continue
            name = tool.get("name")
            input_schema = tool.get("inputSchema")
            if isinstance(name, str) and isinstance(input_schema, dict):
                self.remember(name, input_schema)
                stored += 1
        return stored

    def clear(self) -> None:
        self._schemas.clear()


default_tool_schemas = ToolSchemaCache()


def build_rpc_request(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": str(uuid4()),
        "method": method,
        "params": params or {},
    }


def validate_tool_arguments(name: str, arguments: dict[str, Any], schema: dict[str, Any] | None) -> None:
    """Shallow check of ``arguments`` against a tool's JSON schema.

    Only ``required`` and per-property ``type`` are enforced; anything else
    in the schema is left for the gateway to judge. Raises ``ValueError``.
    """
    if not isinstance(schema, dict):
        return
    required = schema.get("required")
    if isinstance(required, list):
        missing = [item for item in required if isinstance(item, str) and item not in arguments]
        if missing:
            raise ValueError(f"missing required MCP tool arguments for {name}: {', '.join(sorted(missing))}")
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return
    for key, value in arguments.items():
        prop = properties.get(key)
        if not isinstance(prop, dict):
            continue
        accepted_types = _declared_types(prop.get("type"))
        if accepted_types and not matches_json_type(value, accepted_types):
            raise ValueError(f"invalid MCP argument type for {name}.{key}: expected {accepted_types}")


def matches_json_type(value: Any, accepted_types: list[str]) -> bool:
    is_bool = isinstance(value, bool)
    checks = {
        "null": value is None,
        "string": isinstance(value, str),
        "boolean": is_bool,
        "integer": isinstance(value, int) and not is_bool,
        "number": isinstance(value, (int, float)) and not is_bool,
        "object": isinstance(value, dict),
        "array": isinstance(value, list),
    }
    return any(checks.get(type_name, False) for type_name in accepted_types)


def _declared_types(declared: Any) -> list[str]:
    if isinstance(declared, str):
        return [declared]
    if isinstance(declared, list):
        return [item for item in declared if isinstance(item, str)]
    return []
