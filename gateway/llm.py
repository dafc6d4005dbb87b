# gateway/llm.py
from __future__ import annotations
from typing import Any, Dict, List, Optional
import logging
import math
import httpx

from .config import Settings
from .errors import EmbeddingError, GenerationError

log = logging.getLogger(__name__)


class OllamaClient:
    """
    Dünner Client für die native Ollama-API:
      - POST /api/embeddings  {model, prompt}          -> {embedding: [...]}
      - POST /api/generate    {model, prompt, stream}  -> {response: "..."}
    """
    def __init__(self, _settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._settings = _settings
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def startup(self) -> None:
        if self.client is None:
            limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
            headers = {"Content-Type": "application/json"}
            if self._settings.LLM_API_KEY:
                headers["Authorization"] = f"Bearer {self._settings.LLM_API_KEY}"
            self.client = httpx.AsyncClient(
                base_url=self._settings.OLLAMA_API_BASE_URL,
                timeout=httpx.Timeout(self._settings.LLM_TIMEOUT_SECONDS),
                http2=True,
                limits=limits,
                headers=headers,
                transport=self._transport,
            )

    async def shutdown(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def warmup(self) -> None:
        """
        Lädt das Generierungsmodell vor (leerer Prompt + keep_alive),
        damit die erste echte Frage nicht den Kaltstart bezahlt.
        """
        await self.startup()
        assert self.client is not None
        r = await self.client.post(
            "/api/generate",
            json={"model": self._settings.LLM_MODEL, "keep_alive": self._settings.LLM_KEEP_ALIVE},
        )
        r.raise_for_status()

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self.startup()
        assert self.client is not None
        r = await self.client.post(path, json=payload)
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected response body from {path}")
        return data

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self._settings.EMBEDDING_MODEL, "prompt": text}
        try:
            data = await self._post_json("/api/embeddings", payload)
        except (httpx.HTTPError, ValueError) as e:
            log.error("Error generating embedding from Ollama: %s", e)
            raise EmbeddingError("Failed to generate embedding.") from e

        vec = data.get("embedding")
        if (
            not isinstance(vec, list)
            or not vec
            or not all(isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x) for x in vec)
        ):
            log.error("Invalid response from Ollama embeddings API: missing embedding")
            raise EmbeddingError("Invalid response from Ollama embeddings API")
        return [float(x) for x in vec]

    async def generate(self, prompt: str) -> str:
        payload = {
            "model": self._settings.LLM_MODEL,
            "prompt": prompt,
            "stream": False,
            "keep_alive": self._settings.LLM_KEEP_ALIVE,
        }
        try:
            data = await self._post_json("/api/generate", payload)
        except (httpx.HTTPError, ValueError) as e:
            log.error("Error querying Ollama generate endpoint: %s", e)
            raise GenerationError("Failed to get a response from the AI model.") from e

        text = data.get("response")
        if not isinstance(text, str):
            log.error("Invalid response from Ollama generate API: missing response")
            raise GenerationError("Invalid response from Ollama generate API")
        return text
