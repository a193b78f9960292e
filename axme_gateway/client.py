from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Callable
from uuid import uuid4

import httpx

from .config import AxmeClientConfig
from .exceptions import AxmeServerError, rpc_error_from_payload
from .mcp import ToolSchemaCache, build_rpc_request, default_tool_schemas, validate_tool_arguments
from .observe import IntentObserver
from .transport import RequestEngine, SleepFunc

logger = logging.getLogger(__name__)


class AxmeClient:
    """Async client for the AXME gateway REST API and its MCP endpoint.

    Reads are retried up to ``config.max_retries`` times; writes only when an
    ``idempotency_key`` is given. Use as ``async with AxmeClient(cfg) as c``.
    """

    def __init__(
        self,
        config: AxmeClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc | None = None,
        clock: Callable[[], float] = time.monotonic,
        tool_schemas: ToolSchemaCache | None = None,
    ) -> None:
        self._config = config
        self._engine = RequestEngine(config, http_client=http_client, sleep=sleep)
        self._observer = IntentObserver(self._engine, clock=clock)
        self._tool_schemas = tool_schemas if tool_schemas is not None else default_tool_schemas

    @property
    def config(self) -> AxmeClientConfig:
        return self._config

    async def aclose(self) -> None:
        await self._engine.aclose()

    async def __aenter__(self) -> "AxmeClient":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, traceback: Any) -> None:
        await self.aclose()

    async def health(self, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get("/health", trace_id=trace_id)

    # Intents

    async def create_intent(
        self,
        payload: dict[str, Any],
        *,
        correlation_id: str,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        existing_correlation_id = payload.get("correlation_id")
        if existing_correlation_id is not None and existing_correlation_id != correlation_id:
            raise ValueError("payload correlation_id must match correlation_id argument")
        body = {**payload, "correlation_id": correlation_id}
        return await self._post("/v1/intents", body, idempotency_key=idempotency_key, trace_id=trace_id)

    async def send_intent(
        self,
        payload: dict[str, Any],
        *,
        correlation_id: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> str:
        """Create an intent and return its id, generating a correlation id if needed."""
        if correlation_id is None:
            existing = payload.get("correlation_id")
            correlation_id = existing if isinstance(existing, str) and existing else str(uuid4())
        created = await self.create_intent(
            payload,
            correlation_id=correlation_id,
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )
        intent_id = created.get("intent_id")
        if not isinstance(intent_id, str) or not intent_id:
            raise ValueError("create_intent response does not include string intent_id")
        return intent_id

    async def get_intent(self, intent_id: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get(f"/v1/intents/{intent_id}", trace_id=trace_id)

    async def list_intent_events(
        self,
        intent_id: str,
        *,
        since: int | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._observer.list_events(intent_id, since=since, trace_id=trace_id)

    async def resolve_intent(
        self,
        intent_id: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._post(
            f"/v1/intents/{intent_id}/resolve", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    def observe(
        self,
        intent_id: str,
        *,
        since: int = 0,
        wait_seconds: int = 15,
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream lifecycle events for ``intent_id`` up to and including the terminal one."""
        return self._observer.observe(
            intent_id,
            since=since,
            wait_seconds=wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        )

    async def wait_for(
        self,
        intent_id: str,
        *,
        since: int = 0,
        wait_seconds: int = 15,
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._observer.wait_for(
            intent_id,
            since=since,
            wait_seconds=wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        )

    # Inbox

    async def list_inbox(self, *, owner_agent: str | None = None, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get("/v1/inbox", params=self._owner_params(owner_agent), trace_id=trace_id)

    async def get_inbox_thread(
        self, thread_id: str, *, owner_agent: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._get(f"/v1/inbox/{thread_id}", params=self._owner_params(owner_agent), trace_id=trace_id)

    async def list_inbox_changes(
        self,
        *,
        owner_agent: str | None = None,
        cursor: str | None = None,
        limit: int | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        params = self._owner_params(owner_agent) or {}
        if cursor is not None:
            params["cursor"] = cursor
        if limit is not None:
            if limit < 1:
                raise ValueError("limit must be >= 1")
            params["limit"] = str(limit)
        return await self._get("/v1/inbox/changes", params=params or None, trace_id=trace_id)

    async def reply_inbox_thread(
        self,
        thread_id: str,
        *,
        message: str,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._thread_action(
            thread_id, "reply", {"message": message}, owner_agent, idempotency_key, trace_id
        )

    async def delegate_inbox_thread(
        self,
        thread_id: str,
        payload: dict[str, Any],
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._thread_action(thread_id, "delegate", payload, owner_agent, idempotency_key, trace_id)

    async def approve_inbox_thread(
        self,
        thread_id: str,
        payload: dict[str, Any],
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._thread_action(thread_id, "approve", payload, owner_agent, idempotency_key, trace_id)

    async def reject_inbox_thread(
        self,
        thread_id: str,
        payload: dict[str, Any],
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._thread_action(thread_id, "reject", payload, owner_agent, idempotency_key, trace_id)

    async def delete_inbox_messages(
        self,
        thread_id: str,
        payload: dict[str, Any],
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._thread_action(
            thread_id, "messages/delete", payload, owner_agent, idempotency_key, trace_id
        )

    # Approvals, capabilities, invites

    async def decide_approval(
        self,
        approval_id: str,
        *,
        decision: str,
        comment: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"decision": decision}
        if comment is not None:
            payload["comment"] = comment
        return await self._post(
            f"/v1/approvals/{approval_id}/decision", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    async def get_capabilities(self, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get("/v1/capabilities", trace_id=trace_id)

    async def create_invite(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post("/v1/invites/create", payload, idempotency_key=idempotency_key, trace_id=trace_id)

    async def get_invite(self, token: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get(f"/v1/invites/{token}", trace_id=trace_id)

    async def accept_invite(
        self,
        token: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._post(
            f"/v1/invites/{token}/accept", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    # Media

    async def create_media_upload(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/media/create-upload", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    async def get_media_upload(self, upload_id: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get(f"/v1/media/{upload_id}", trace_id=trace_id)

    async def finalize_media_upload(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/media/finalize-upload", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    # Schemas

    async def upsert_schema(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post("/v1/schemas", payload, idempotency_key=idempotency_key, trace_id=trace_id)

    async def get_schema(self, semantic_type: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get(f"/v1/schemas/{semantic_type}", trace_id=trace_id)

    # Users

    async def register_nick(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/users/register-nick", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    async def check_nick(self, nick: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get("/v1/users/check-nick", params={"nick": nick}, trace_id=trace_id)

    async def rename_nick(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post("/v1/users/rename-nick", payload, idempotency_key=idempotency_key, trace_id=trace_id)

    async def get_user_profile(self, owner_agent: str, *, trace_id: str | None = None) -> dict[str, Any]:
        return await self._get("/v1/users/profile", params={"owner_agent": owner_agent}, trace_id=trace_id)

    async def update_user_profile(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/users/profile/update", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    # Webhooks

    async def upsert_webhook_subscription(
        self, payload: dict[str, Any], *, idempotency_key: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/webhooks/subscriptions", payload, idempotency_key=idempotency_key, trace_id=trace_id
        )

    async def list_webhook_subscriptions(
        self, *, owner_agent: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._get("/v1/webhooks/subscriptions", params=self._owner_params(owner_agent), trace_id=trace_id)

    async def delete_webhook_subscription(
        self, subscription_id: str, *, owner_agent: str | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._engine.request_json(
            "DELETE",
            f"/v1/webhooks/subscriptions/{subscription_id}",
            params=self._owner_params(owner_agent),
            trace_id=trace_id,
            retryable=True,
        )

    async def publish_webhook_event(
        self,
        payload: dict[str, Any],
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/webhooks/events",
            payload,
            params=self._owner_params(owner_agent),
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )

    async def replay_webhook_event(
        self,
        event_id: str,
        *,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._post(
            f"/v1/webhooks/events/{event_id}/replay",
            None,
            params=self._owner_params(owner_agent),
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )

    # MCP tool protocol

    async def mcp_initialize(self, *, protocol_version: str | None = None, trace_id: str | None = None) -> dict[str, Any]:
        params = {"protocolVersion": protocol_version or self._config.mcp_protocol_version}
        return await self._mcp_request("initialize", params, trace_id=trace_id, read_only=True)

    async def mcp_list_tools(self, *, trace_id: str | None = None) -> dict[str, Any]:
        result = await self._mcp_request("tools/list", {}, trace_id=trace_id, read_only=True)
        stored = self._tool_schemas.remember_tools(result.get("tools"))
        logger.debug("cached %d MCP tool schemas", stored)
        return result

    async def mcp_call_tool(
        self,
        name: str,
        *,
        arguments: dict[str, Any] | None = None,
        owner_agent: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
        validate_input_schema: bool = True,
        retryable: bool | None = None,
    ) -> dict[str, Any]:
        """Invoke a gateway tool through ``tools/call``.

        Arguments are checked against the schema cached by
        :meth:`mcp_list_tools` when one is known. A call is retried only when
        it carries an ``idempotency_key``; asking for ``retryable=True``
        without one is rejected.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("tool name must be non-empty string")
        tool_name = name.strip()
        should_retry = retryable if retryable is not None else bool(idempotency_key)
        if should_retry and not idempotency_key:
            raise ValueError("retryable tool calls require an idempotency_key")

        args = dict(arguments or {})
        resolved_owner = owner_agent or self._config.default_owner_agent
        if resolved_owner:
            args.setdefault("owner_agent", resolved_owner)
        if idempotency_key:
            args.setdefault("idempotency_key", idempotency_key)
        if validate_input_schema:
            validate_tool_arguments(tool_name, args, self._tool_schemas.get(tool_name))

        params: dict[str, Any] = {"name": tool_name, "arguments": args}
        if resolved_owner:
            params["owner_agent"] = resolved_owner
        return await self._mcp_request(
            "tools/call",
            params,
            trace_id=trace_id,
            idempotency_key=idempotency_key,
            retryable=should_retry,
        )

    # Internals

    async def _get(
        self, path: str, *, params: dict[str, str] | None = None, trace_id: str | None = None
    ) -> dict[str, Any]:
        return await self._engine.request_json("GET", path, params=params, trace_id=trace_id, retryable=True)

    async def _post(
        self,
        path: str,
        payload: dict[str, Any] | None,
        *,
        params: dict[str, str] | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._engine.request_json(
            "POST",
            path,
            params=params,
            json_body=payload,
            idempotency_key=idempotency_key,
            trace_id=trace_id,
            retryable=idempotency_key is not None,
        )

    async def _thread_action(
        self,
        thread_id: str,
        action: str,
        payload: dict[str, Any],
        owner_agent: str | None,
        idempotency_key: str | None,
        trace_id: str | None,
    ) -> dict[str, Any]:
        return await self._post(
            f"/v1/inbox/{thread_id}/{action}",
            payload,
            params=self._owner_params(owner_agent),
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )

    def _owner_params(self, owner_agent: str | None) -> dict[str, str] | None:
        resolved = owner_agent or self._config.default_owner_agent
        if resolved is None:
            return None
        return {"owner_agent": resolved}

    async def _mcp_request(
        self,
        method: str,
        params: dict[str, Any],
        *,
        trace_id: str | None,
        idempotency_key: str | None = None,
        retryable: bool = False,
        read_only: bool = False,
    ) -> dict[str, Any]:
        payload = build_rpc_request(method, params)
        if read_only:
            # The rpc id doubles as the idempotency key so reads can be replayed.
            idempotency_key = idempotency_key or payload["id"]
            retryable = True
        self._notify_mcp_observer(
            {"phase": "request", "method": method, "rpc_id": payload["id"], "retryable": retryable}
        )
        response = await self._engine.request_json(
            "POST",
            self._config.mcp_endpoint_path,
            json_body=payload,
            idempotency_key=idempotency_key,
            trace_id=trace_id,
            retryable=retryable,
        )
        if response.get("error") is not None:
            raise rpc_error_from_payload(response)
        result = response.get("result")
        if not isinstance(result, dict):
            raise AxmeServerError(502, "invalid MCP response: missing result object", body=response)
        self._notify_mcp_observer(
            {"phase": "response", "method": method, "rpc_id": payload["id"], "result_keys": sorted(result)}
        )
        return result

    def _notify_mcp_observer(self, event: dict[str, Any]) -> None:
        observer = self._config.mcp_observer
        if observer is not None:
            observer(event)
