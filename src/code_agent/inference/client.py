"""HTTP client for the local inference endpoint (generation + embeddings)."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from code_agent.config import EndpointConfig

logger = logging.getLogger(__name__)


class InferenceError(RuntimeError):
    """Raised for any transport, HTTP status, or payload failure."""


class GenerationOptions(BaseModel):
    """Sampling options for one ``generate`` call."""

    temperature: float = Field(default=0.7, ge=0.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1000, ge=1)
    stop: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "num_predict": self.max_tokens,
        }
        if self.stop:
            payload["stop"] = list(self.stop)
        return payload


class InferenceClient:
    """Thin synchronous wrapper around ``/api/generate`` and ``/api/embeddings``.

    A caller-supplied ``httpx.Client`` is used as-is and never closed here; an
    internally created one is closed by :meth:`close`.
    """

    def __init__(
        self,
        config: EndpointConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config or EndpointConfig()
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(
            base_url=self.config.base_url.rstrip("/"),
            timeout=self.config.timeout_seconds,
        )

    def generate(
        self,
        model: str,
        prompt: str,
        *,
        options: GenerationOptions | None = None,
        stream: bool = False,
    ) -> str:
        payload = {
            "model": model,
            "prompt": prompt,
            "stream": stream,
            "options": (options or GenerationOptions()).to_payload(),
        }
        if stream:
            return self._generate_stream(payload)

        body = self._post_json("/api/generate", payload)
        response = body.get("response")
        if not isinstance(response, str):
            raise InferenceError("generate response has no 'response' text")
        return response

    def embeddings(self, model: str, prompt: str) -> list[float]:
        body = self._post_json("/api/embeddings", {"model": model, "prompt": prompt})
        embedding = body.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise InferenceError("embeddings response has no 'embedding' vector")
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise InferenceError(f"non-numeric embedding value: {exc}") from exc

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "InferenceClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._http.post(path, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise InferenceError(
                f"{path} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise InferenceError(f"{path} request failed: {exc}") from exc
        except ValueError as exc:
            raise InferenceError(f"{path} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise InferenceError(f"{path} returned a non-object body")
        return body

    def _generate_stream(self, payload: dict[str, Any]) -> str:
        fragments: list[str] = []
        try:
            with self._http.stream("POST", "/api/generate", json=payload) as response:
                response.raise_for_status()
                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        fragment = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Skipping undecodable stream line: %r", line[:80])
                        continue
                    if not isinstance(fragment, dict):
                        continue
                    fragments.append(str(fragment.get("response", "")))
                    if fragment.get("done"):
                        break
        except httpx.HTTPStatusError as exc:
            raise InferenceError(
                f"/api/generate returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise InferenceError(f"/api/generate stream failed: {exc}") from exc
        return "".join(fragments)
