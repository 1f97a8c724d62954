"""Anthropic Messages API provider (SSE streaming)."""

from __future__ import annotations

import json
from typing import Any

from strand.config import Settings
from strand.errors import AuthenticationError, ResponseError
from strand.runtime.models import StreamDelta, StreamSignal, TokenKind


# Anthropic API version header
_API_VERSION = "2023-06-01"

# Options consumed by the request builder rather than passed through verbatim
_SYSTEM_PROMPT_KEY = "system_prompt"


class AnthropicProvider:
    """Encodes prompts for /v1/messages and decodes its responses."""

    name = "anthropic"
    stream_format = "sse"

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        auth_token: str = "",
        base_url: str = "https://api.anthropic.com",
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._auth_token = auth_token
        self._base_url = base_url.rstrip("/")
        self._extra_headers = dict(extra_headers or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> AnthropicProvider:
        return cls(
            settings.model,
            api_key=settings.anthropic_api_key,
            auth_token=settings.anthropic_auth_token,
            base_url=settings.api_base_url,
        )

    def endpoint(self) -> str:
        return f"{self._base_url}/v1/messages"

    def headers(self) -> dict[str, str]:
        """Request headers including auth.

        OAT tokens (sk-ant-oat*) require Bearer auth plus beta headers;
        regular API keys use x-api-key.  Raises AuthenticationError when
        no credential is configured.
        """
        headers: dict[str, str] = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }
        token = self._auth_token or self._api_key
        if not token:
            raise AuthenticationError(
                "neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set"
            )
        if self._auth_token or "sk-ant-oat" in token:
            headers["authorization"] = f"Bearer {token}"
            if "sk-ant-oat" in token:
                headers["anthropic-beta"] = "oauth-2025-04-20"
                headers["anthropic-dangerous-direct-browser-access"] = "true"
        else:
            headers["x-api-key"] = token
        headers.update(self._extra_headers)
        return headers

    def supports_streaming(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Request encoding
    # ------------------------------------------------------------------

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        options: dict[str, Any],
        stream: bool = False,
    ) -> bytes:
        """Shared by the plain, structured and streaming request builders."""
        opts = dict(options)
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": opts.pop("max_tokens", 1024),
            "messages": messages,
        }
        system_prompt = opts.pop(_SYSTEM_PROMPT_KEY, None)
        if system_prompt:
            payload["system"] = [
                {
                    "type": "text",
                    "text": system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ]
        payload.update(opts)
        if stream:
            payload["stream"] = True
        return json.dumps(payload).encode("utf-8")

    def prepare_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        return self._build_payload([{"role": "user", "content": prompt}], options)

    def prepare_stream_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        return self._build_payload(
            [{"role": "user", "content": prompt}], options, stream=True
        )

    def prepare_request_with_messages(
        self,
        messages: list[dict[str, Any]],
        options: dict[str, Any],
    ) -> bytes:
        """Send memory as a messages array so cache hints survive.

        System turns are folded into the system prompt; tool call records
        are not re-sent.
        """
        opts = dict(options)
        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        if system_parts and not opts.get(_SYSTEM_PROMPT_KEY):
            opts[_SYSTEM_PROMPT_KEY] = "\n\n".join(
                p if isinstance(p, str) else json.dumps(p) for p in system_parts
            )
        chat = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m["role"] != "system"
        ]
        return self._build_payload(chat, opts)

    # ------------------------------------------------------------------
    # Response decoding
    # ------------------------------------------------------------------

    def parse_response(self, body: bytes) -> str:
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ResponseError("malformed response body") from e

        if not isinstance(data, dict):
            raise ResponseError("response body is not an object")
        if data.get("type") == "error":
            error = data.get("error", {})
            raise ResponseError(
                f"{error.get('type', 'unknown')}: {error.get('message', '')}"
            )
        content = data.get("content")
        if not isinstance(content, list):
            raise ResponseError("response has no content blocks")

        text_parts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(text_parts)

    def parse_stream_response(self, payload: bytes) -> StreamDelta | StreamSignal:
        """Interpret one SSE ``data:`` payload.

        Pings and block boundaries are skipped.  stop_reason and output
        usage arrive in message_delta; input usage in message_start.
        In-stream errors (HTTP 200 but an error event) become ERROR deltas.
        """
        chunk = payload.strip()
        if not chunk:
            return StreamSignal.SKIP
        if chunk == b"[DONE]":
            return StreamSignal.END

        try:
            data = json.loads(chunk)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ResponseError("malformed stream event") from e

        event_type = data.get("type")

        if event_type == "error":
            error = data.get("error", {})
            return StreamDelta(
                kind=TokenKind.ERROR,
                text=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
            )

        if event_type == "content_block_start":
            block = data.get("content_block", {})
            if block.get("type") == "tool_use":
                return StreamDelta(
                    kind=TokenKind.FUNCTION_CALL,
                    metadata={
                        "tool_name": block.get("name", ""),
                        "tool_id": block.get("id", ""),
                        "block_index": data.get("index", 0),
                    },
                )
            return StreamSignal.SKIP

        if event_type == "content_block_delta":
            delta = data.get("delta", {})
            if delta.get("type") == "text_delta" and delta.get("text"):
                return StreamDelta(text=delta["text"])
            if delta.get("type") == "input_json_delta":
                return StreamDelta(
                    kind=TokenKind.FUNCTION_CALL,
                    text=delta.get("partial_json", ""),
                    metadata={"block_index": data.get("index", 0)},
                )
            return StreamSignal.SKIP

        if event_type == "message_start":
            usage = data.get("message", {}).get("usage")
            if usage:
                return StreamDelta(
                    kind=TokenKind.USAGE,
                    input_tokens=usage.get("input_tokens"),
                    output_tokens=usage.get("output_tokens"),
                )
            return StreamSignal.SKIP

        if event_type == "message_delta":
            usage = data.get("usage")
            if usage:
                return StreamDelta(
                    kind=TokenKind.USAGE,
                    input_tokens=usage.get("input_tokens"),
                    output_tokens=usage.get("output_tokens"),
                    metadata={"stop_reason": data.get("delta", {}).get("stop_reason", "")},
                )
            return StreamSignal.SKIP

        if event_type == "message_stop":
            return StreamSignal.END

        # ping, content_block_stop, thinking/signature deltas, future events
        return StreamSignal.SKIP
