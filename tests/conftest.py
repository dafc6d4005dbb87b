"""
Gemeinsame Fixtures: Mock-Ollama (httpx.MockTransport) und Korpus-Dateien.
Kein Test braucht ein echtes Ollama oder Netzwerk.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest


CORPUS_ENTRIES: List[Dict[str, Any]] = [
    {"id": "valve", "text": "The aortic valve separates the left ventricle from the aorta.", "embedding": [1.0, 0.0, 0.0]},
    {"id": "bypass", "text": "Coronary artery bypass grafting restores blood flow.", "embedding": [0.8, 0.6, 0.0]},
    {"id": "pump", "text": "Cardiopulmonary bypass takes over heart and lung function.", "embedding": [0.0, 1.0, 0.0]},
    {"id": "other", "text": "Unrelated chunk about logistics.", "embedding": [-0.6, 0.0, 0.8]},
]


@pytest.fixture
def corpus_file(tmp_path: Path) -> Path:
    path = tmp_path / "embeddings.json"
    path.write_text(json.dumps({"embeddings": CORPUS_ENTRIES}), encoding="utf-8")
    return path


class FakeOllama:
    """
    Minimaler Ollama-Ersatz für httpx.MockTransport.
    Zeichnet alle Requests auf; Status/Antworten sind pro Test einstellbar.
    """

    def __init__(
        self,
        embedding: Optional[List[float]] = None,
        response: Optional[str] = "The aortic valve sits between ventricle and aorta.",
        embed_status: int = 200,
        generate_status: int = 200,
    ) -> None:
        self.embedding = embedding if embedding is not None else [1.0, 0.0, 0.0]
        self.response = response
        self.embed_status = embed_status
        self.generate_status = generate_status
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append({"path": request.url.path, "json": body, "headers": dict(request.headers)})
        if request.url.path == "/api/embeddings":
            if self.embed_status != 200:
                return httpx.Response(self.embed_status, json={"error": "boom"})
            return httpx.Response(200, json={"embedding": self.embedding})
        if request.url.path == "/api/generate":
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={"error": "boom"})
            if self.response is None:
                return httpx.Response(200, json={"done": True})
            return httpx.Response(200, json={"response": self.response, "done": True})
        return httpx.Response(404, json={"error": "not found"})

    def calls(self, path: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"] == path]

    def prompts(self) -> List[str]:
        return [r["json"]["prompt"] for r in self.calls("/api/generate") if "prompt" in r["json"]]


@pytest.fixture
def fake_ollama() -> Callable[..., FakeOllama]:
    def _make(**kwargs: Any) -> FakeOllama:
        return FakeOllama(**kwargs)
    return _make
