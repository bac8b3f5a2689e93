"""Inference backend contract and the Ollama adapter."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.core.exceptions import BackendRejected, BackendTimeout, BackendUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceResult:
    text: str
    input_tokens: int
    output_tokens: int
    model_id: str


class InferenceBackend(Protocol):
    def invoke(
        self,
        model_id: str,
        prompt: str,
        max_output_tokens: int,
        *,
        temperature: float = 0.3,
        timeout: float = 30.0,
    ) -> InferenceResult: ...


def estimate_tokens(text: str) -> int:
    """Rough token count used when a backend does not report usage (~4 chars/token)."""
    return math.ceil(len(text or "") / 4)


def extract_json(text: str) -> dict[str, Any] | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    snippet = text[start : end + 1]
    try:
        data = json.loads(snippet)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class OllamaBackend:
    """Local Ollama server; tries ``/api/generate`` first, then ``/api/chat``."""

    def __init__(self, base_url: str, *, json_mode: bool = True) -> None:
        self.base_url = base_url.rstrip("/")
        self.json_mode = json_mode

    def invoke(
        self,
        model_id: str,
        prompt: str,
        max_output_tokens: int,
        *,
        temperature: float = 0.3,
        timeout: float = 30.0,
    ) -> InferenceResult:
        options = {"temperature": temperature, "num_predict": max_output_tokens}
        try:
            with httpx.Client(timeout=timeout) as client:
                generate_payload: dict[str, Any] = {
                    "model": model_id,
                    "prompt": prompt,
                    "stream": False,
                    "options": options,
                }
                if self.json_mode:
                    generate_payload["format"] = "json"
                response = client.post(f"{self.base_url}/api/generate", json=generate_payload)
                if response.status_code == 404:
                    chat_payload: dict[str, Any] = {
                        "model": model_id,
                        "messages": [{"role": "user", "content": prompt}],
                        "stream": False,
                        "options": options,
                    }
                    if self.json_mode:
                        chat_payload["format"] = "json"
                    response = client.post(f"{self.base_url}/api/chat", json=chat_payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise BackendTimeout(f"Ollama timed out after {timeout}s", model_id=model_id) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                raise BackendUnavailable(f"Ollama returned {status}", model_id=model_id) from exc
            raise BackendRejected(f"Ollama rejected request ({status})", model_id=model_id) from exc
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"Ollama unreachable: {exc}", model_id=model_id) from exc
        except ValueError as exc:
            raise BackendRejected("Ollama returned a non-JSON body", model_id=model_id) from exc

        if not isinstance(data, dict):
            data = {}
        message = data.get("message")
        if isinstance(message, dict):
            text = str(message.get("content", "")).strip()
        else:
            text = str(data.get("response", "")).strip()
        input_tokens = data.get("prompt_eval_count")
        output_tokens = data.get("eval_count")
        return InferenceResult(
            text=text,
            input_tokens=int(input_tokens) if isinstance(input_tokens, int) else estimate_tokens(prompt),
            output_tokens=int(output_tokens) if isinstance(output_tokens, int) else estimate_tokens(text),
            model_id=model_id,
        )
