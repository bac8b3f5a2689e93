"""AWS Bedrock inference backend with one adapter per model family."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from app.core.exceptions import BackendRejected, BackendTimeout, BackendUnavailable
from app.services.ai.llm import InferenceResult, estimate_tokens

logger = logging.getLogger(__name__)

_REJECTED_CODES = {
    "ValidationException",
    "AccessDeniedException",
    "ResourceNotFoundException",
    "ModelNotReadyException",
}


class ModelFamilyAdapter:
    """Request/response shape for one Bedrock model family."""

    family = "base"

    def build_body(self, prompt: str, max_tokens: int, temperature: float) -> dict[str, Any]:
        raise NotImplementedError

    def parse(self, body: dict[str, Any], prompt: str) -> tuple[str, int, int]:
        raise NotImplementedError


class ClaudeAdapter(ModelFamilyAdapter):
    family = "anthropic"

    def build_body(self, prompt: str, max_tokens: int, temperature: float) -> dict[str, Any]:
        return {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    def parse(self, body: dict[str, Any], prompt: str) -> tuple[str, int, int]:
        content = body.get("content") or []
        text = ""
        if content and isinstance(content[0], dict):
            text = str(content[0].get("text", ""))
        usage = body.get("usage") or {}
        return (
            text,
            int(usage.get("input_tokens") or estimate_tokens(prompt)),
            int(usage.get("output_tokens") or estimate_tokens(text)),
        )


class TitanAdapter(ModelFamilyAdapter):
    family = "amazon"

    def build_body(self, prompt: str, max_tokens: int, temperature: float) -> dict[str, Any]:
        return {
            "inputText": prompt,
            "textGenerationConfig": {
                "maxTokenCount": max_tokens,
                "temperature": temperature,
                "topP": 0.9,
            },
        }

    def parse(self, body: dict[str, Any], prompt: str) -> tuple[str, int, int]:
        results = body.get("results") or []
        first = results[0] if results and isinstance(results[0], dict) else {}
        text = str(first.get("outputText", ""))
        return (
            text,
            int(body.get("inputTextTokenCount") or estimate_tokens(prompt)),
            int(first.get("tokenCount") or estimate_tokens(text)),
        )


class Ai21Adapter(ModelFamilyAdapter):
    family = "ai21"

    def build_body(self, prompt: str, max_tokens: int, temperature: float) -> dict[str, Any]:
        return {"prompt": prompt, "maxTokens": max_tokens, "temperature": temperature, "topP": 0.9}

    def parse(self, body: dict[str, Any], prompt: str) -> tuple[str, int, int]:
        completions = body.get("completions") or []
        text = ""
        if completions and isinstance(completions[0], dict):
            text = str((completions[0].get("data") or {}).get("text", ""))
        # Jurassic responses carry token lists rather than counts.
        return text, estimate_tokens(prompt), estimate_tokens(text)


class LlamaAdapter(ModelFamilyAdapter):
    family = "meta"

    def build_body(self, prompt: str, max_tokens: int, temperature: float) -> dict[str, Any]:
        return {"prompt": prompt, "max_gen_len": max_tokens, "temperature": temperature, "top_p": 0.9}

    def parse(self, body: dict[str, Any], prompt: str) -> tuple[str, int, int]:
        text = str(body.get("generation", ""))
        return (
            text,
            int(body.get("prompt_token_count") or estimate_tokens(prompt)),
            int(body.get("generation_token_count") or estimate_tokens(text)),
        )


_ADAPTERS: dict[str, ModelFamilyAdapter] = {
    adapter.family: adapter for adapter in (ClaudeAdapter(), TitanAdapter(), Ai21Adapter(), LlamaAdapter())
}


def adapter_for(model_id: str) -> ModelFamilyAdapter:
    # Cross-region inference profiles are prefixed with a geography ("us.anthropic...").
    parts = (model_id or "").split(".")
    for part in parts[:2]:
        adapter = _ADAPTERS.get(part)
        if adapter is not None:
            return adapter
    raise BackendRejected(f"Unsupported model family: {model_id}", model_id=model_id)


class BedrockBackend:
    def __init__(
        self,
        *,
        region: str,
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        self.region = region
        self._access_key_id = access_key_id or None
        self._secret_access_key = secret_access_key or None
        self._clients: dict[int, Any] = {}
        self._lock = threading.Lock()

    def _client(self, timeout: float):
        read_timeout = max(int(timeout), 1)
        with self._lock:
            client = self._clients.get(read_timeout)
            if client is None:
                config = Config(
                    retries={"max_attempts": 2, "mode": "standard"},
                    connect_timeout=5,
                    read_timeout=read_timeout,
                )
                client = boto3.client(
                    "bedrock-runtime",
                    region_name=self.region,
                    aws_access_key_id=self._access_key_id,
                    aws_secret_access_key=self._secret_access_key,
                    config=config,
                )
                self._clients[read_timeout] = client
                logger.info("Bedrock client initialized (region=%s, read_timeout=%ss)", self.region, read_timeout)
        return client

    def invoke(
        self,
        model_id: str,
        prompt: str,
        max_output_tokens: int,
        *,
        temperature: float = 0.3,
        timeout: float = 30.0,
    ) -> InferenceResult:
        adapter = adapter_for(model_id)
        body = adapter.build_body(prompt, max_output_tokens, temperature)
        try:
            response = self._client(timeout).invoke_model(
                modelId=model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            payload = json.loads(response["body"].read())
        except (ReadTimeoutError, ConnectTimeoutError) as exc:
            raise BackendTimeout(f"Bedrock timed out after {timeout}s", model_id=model_id) from exc
        except (EndpointConnectionError, NoCredentialsError) as exc:
            raise BackendUnavailable(f"Bedrock unreachable: {exc}", model_id=model_id) from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _REJECTED_CODES:
                raise BackendRejected(f"Bedrock rejected request: {code}", model_id=model_id) from exc
            raise BackendUnavailable(f"Bedrock error: {code or exc}", model_id=model_id) from exc
        except BotoCoreError as exc:
            raise BackendUnavailable(f"Bedrock error: {exc}", model_id=model_id) from exc
        except ValueError as exc:
            raise BackendRejected("Bedrock returned a non-JSON body", model_id=model_id) from exc

        if not isinstance(payload, dict):
            payload = {}
        text, input_tokens, output_tokens = adapter.parse(payload, prompt)
        return InferenceResult(
            text=text.strip(),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model_id=model_id,
        )
