"""Ollama /api/generate provider (newline-delimited JSON streaming)."""

from __future__ import annotations

import json
from typing import Any

from strand.config import Settings
from strand.errors import ResponseError
from strand.runtime.models import StreamDelta, StreamSignal, TokenKind

# Generic option names mapped to Ollama's "options" block
_OPTION_NAMES = {
    "max_tokens": "num_predict",
    "temperature": "temperature",
    "top_p": "top_p",
    "seed": "seed",
}


class OllamaProvider:
    name = "ollama"
    stream_format = "ndjson"

    def __init__(self, model: str, base_url: str = "http://localhost:11434") -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> OllamaProvider:
        return cls(settings.model, settings.ollama_base_url)

    def endpoint(self) -> str:
        return f"{self.base_url}/api/generate"

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def supports_streaming(self) -> bool:
        return True

    def _build_payload(self, prompt: str, options: dict[str, Any], stream: bool) -> bytes:
        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
        }
        model_options: dict[str, Any] = {}
        for key, value in options.items():
            if key in _OPTION_NAMES:
                model_options[_OPTION_NAMES[key]] = value
            elif key == "system_prompt":
                payload["system"] = value
            else:
                payload[key] = value
        if model_options:
            payload["options"] = model_options
        return json.dumps(payload).encode("utf-8")

    def prepare_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        return self._build_payload(prompt, options, stream=False)

    def prepare_stream_request(self, prompt: str, options: dict[str, Any]) -> bytes:
        return self._build_payload(prompt, options, stream=True)

    def parse_response(self, body: bytes) -> str:
        """Join the ``response`` fields of one or more JSON records."""
        parts: list[str] = []
        for line in body.decode("utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ResponseError("error parsing Ollama response") from e
            if "error" in record:
                raise ResponseError(f"Ollama error: {record['error']}")
            parts.append(record.get("response", ""))
            if record.get("done"):
                break
        if not parts:
            raise ResponseError("Ollama returned an empty body")
        return "".join(parts)

    def parse_stream_response(self, payload: bytes) -> StreamDelta | StreamSignal:
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ResponseError("malformed Ollama stream record") from e

        if "error" in record:
            return StreamDelta(kind=TokenKind.ERROR, text=str(record["error"]))

        if record.get("done"):
            # Final record carries the usage counts and (usually) no text
            if "prompt_eval_count" in record or "eval_count" in record:
                return StreamDelta(
                    kind=TokenKind.USAGE,
                    input_tokens=record.get("prompt_eval_count"),
                    output_tokens=record.get("eval_count"),
                    metadata={"stop_reason": record.get("done_reason", "")},
                )
            return StreamSignal.END

        text = record.get("response", "")
        if not text:
            return StreamSignal.SKIP
        return StreamDelta(text=text)
