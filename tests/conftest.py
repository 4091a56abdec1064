import json
import re
import zlib
from collections.abc import Iterator

import httpx
import pytest

from code_agent.config import EmbeddingConfig, PipelineConfig
from code_agent.inference.client import InferenceClient

ENHANCER_MARKER = "search queries"
ANSWER_MARKER = "## Current Question:"
IMPROVE_MARKER = "Improved Response:"


def hash_vector(text: str, dimension: int = 64) -> list[float]:
    """Bag-of-tokens vector; texts sharing words have positive cosine similarity."""
    vector = [0.0] * dimension
    for token in re.findall(r"[a-z0-9]+", text.lower()):
        vector[zlib.crc32(token.encode("utf-8")) % dimension] += 1.0
    return vector


class FakeEndpoint:
    """In-process stand-in for the inference endpoint behind ``httpx.MockTransport``.

    Generation replies are picked by the first marker found in the prompt;
    markers listed in ``failing`` answer with HTTP 500 instead.
    """

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.replies: dict[str, str] = {
            IMPROVE_MARKER: "Improved answer using retryRequest by calling it again.",
            ANSWER_MARKER: "The retry logic works by calling `retryRequest` again.",
            ENHANCER_MARKER: "retry logic\nretryRequest implementation",
        }
        self.failing: set[str] = set()
        self.embeddings_down = False
        self.requests: list[tuple[str, dict]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append((request.url.path, payload))
        if request.url.path == "/api/embeddings":
            if self.embeddings_down:
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(
                200, json={"embedding": hash_vector(payload["prompt"], self.dimension)}
            )
        if request.url.path == "/api/generate":
            prompt = payload["prompt"]
            for marker, reply in self.replies.items():
                if marker in prompt:
                    if marker in self.failing:
                        return httpx.Response(500, json={"error": "model crashed"})
                    return httpx.Response(200, json={"response": reply, "done": True})
            return httpx.Response(200, json={"response": "", "done": True})
        return httpx.Response(404, json={"error": "not found"})

    def calls(self, path: str) -> int:
        return sum(1 for called, _ in self.requests if called == path)


@pytest.fixture()
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture()
def inference_client(endpoint: FakeEndpoint) -> Iterator[InferenceClient]:
    http = httpx.Client(
        transport=httpx.MockTransport(endpoint.handler), base_url="http://ollama.test"
    )
    client = InferenceClient(http_client=http)
    yield client
    http.close()


@pytest.fixture()
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        generation_model="gen-model",
        embedding_model="embed-model",
        embedding=EmbeddingConfig(batch_delay_seconds=0.0),
    )
