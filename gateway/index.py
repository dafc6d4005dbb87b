# gateway/index.py
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import json
import logging
import math
import numpy as np

from .errors import CorpusLoadError, DimensionMismatch, NotInitialized

log = logging.getLogger(__name__)

# Schlüssel, unter denen ein Korpus-Objekt die Chunk-Liste halten darf
_LIST_KEYS = ("embeddings", "embedding")


@dataclass(frozen=True)
class EmbeddableChunk:
    id: str
    text: str
    embedding: tuple
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RankedChunk(EmbeddableChunk):
    similarity: float = 0.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    dot(a,b) / (|a| * |b|), 0.0 wenn einer der Vektoren nur Nullen enthält.
    Ungleiche Längen sind ein Konfigurationsfehler (DimensionMismatch).

    Beide Vektoren werden vorher auf max(|x|) = 1 skaliert; der Cosinus ist
    skalierungsinvariant, und so laufen die Normen bei sehr großen bzw.
    sehr kleinen Komponenten weder über noch unter.
    """
    va = _unit_scaled(np.asarray(a, dtype=float))
    vb = _unit_scaled(np.asarray(b, dtype=float))
    if va.shape != vb.shape:
        raise DimensionMismatch(len(va), len(vb))
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    sim = float(np.dot(va, vb)) / (norm_a * norm_b)
    if not math.isfinite(sim):
        raise ValueError("cosine similarity is not finite; vectors must contain finite values only")
    # nur Rundungsfehler klemmen, damit sim(a,a) nie > 1 wird
    return max(-1.0, min(1.0, sim))


def _unit_scaled(v: np.ndarray) -> np.ndarray:
    if v.size == 0:
        return v
    peak = float(np.max(np.abs(v)))
    if peak == 0.0 or not math.isfinite(peak):
        return v
    return v / peak


def _as_vector(raw: Any) -> Optional[tuple]:
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    out = []
    for x in raw:
        # bool ist ein int-Subtyp, gehört aber nicht in einen Vektor
        if isinstance(x, bool) or not isinstance(x, (int, float)):
            return None
        if not math.isfinite(x):
            return None
        out.append(float(x))
    return tuple(out)


def parse_chunks(entries: List[Any]) -> List[EmbeddableChunk]:
    """
    Wandelt rohe Korpus-Einträge in EmbeddableChunks.
    Einträge ohne gültiges Embedding werden übersprungen (geloggt, nicht fatal).
    """
    chunks: List[EmbeddableChunk] = []
    for pos, entry in enumerate(entries):
        if not isinstance(entry, dict):
            log.warning("Skipping corpus entry #%d: not an object", pos)
            continue
        vec = _as_vector(entry.get("embedding"))
        if vec is None:
            log.warning("Skipping corpus entry #%d (id=%r): missing or invalid embedding", pos, entry.get("id"))
            continue
        chunk_id = entry.get("id")
        chunk_id = str(chunk_id) if chunk_id is not None else str(pos)
        text = entry.get("text")
        text = text if isinstance(text, str) else ""
        meta = {k: v for k, v in entry.items() if k not in ("id", "text", "embedding")}
        chunks.append(EmbeddableChunk(id=chunk_id, text=text, embedding=vec, metadata=meta))
    return chunks


class SimilarityIndex:
    """
    Hält den geladenen Korpus (read-only nach load) und rankt per Cosine.
    Lesen braucht kein Locking: nach load() wird nichts mehr verändert.
    """

    def __init__(self) -> None:
        self._chunks: List[EmbeddableChunk] = []
        self._raw_count = 0
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> tuple:
        return tuple(self._chunks)

    # ---------- Laden ----------
    async def load(self, source: str | Path | None, strict: bool = False) -> None:
        """
        Lädt den Korpus genau einmal.

        - source=None        -> leerer Korpus (RAG ohne Kontext)
        - Datei fehlt        -> leerer Korpus, Warnung
        - kein gültiges JSON -> CorpusLoadError (strict) bzw. leerer Korpus
        - falsche Struktur   -> leerer Korpus, Warnung
        """
        if self._loaded:
            log.warning("SimilarityIndex is already loaded; ignoring load(%r)", source)
            return

        if source is None:
            log.warning("No corpus path configured. Answers will run without RAG context.")
            self._loaded = True
            return

        path = Path(source)
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            log.warning("Corpus file not found: %s. Continuing with an empty corpus.", path)
            self._loaded = True
            return
        except (OSError, UnicodeDecodeError) as e:
            if strict:
                raise CorpusLoadError(f"Failed to read corpus file {path}: {e}") from e
            log.warning("Failed to read corpus file %s: %s. Continuing with an empty corpus.", path, e)
            self._loaded = True
            return

        self.load_text(content, strict=strict, origin=str(path))

    def load_text(self, content: str, strict: bool = False, origin: str = "<string>") -> None:
        if self._loaded:
            log.warning("SimilarityIndex is already loaded; ignoring %s", origin)
            return
        try:
            parsed = json.loads(content)
        except ValueError as e:
            if strict:
                raise CorpusLoadError(f"Failed to parse corpus {origin}: {e}") from e
            log.warning("Corpus %s is not valid JSON (%s). Continuing with an empty corpus.", origin, e)
            self._loaded = True
            return

        entries = None
        if isinstance(parsed, list):
            entries = parsed
        elif isinstance(parsed, dict):
            entries = next((parsed[k] for k in _LIST_KEYS if isinstance(parsed.get(k), list)), None)

        if entries is None:
            log.warning(
                'Invalid corpus format in %s. Expected a list or an object with an "embeddings" key.',
                origin,
            )
            self._loaded = True
            return

        self._raw_count = len(entries)
        self._chunks = parse_chunks(entries)
        self._loaded = True
        log.info("Loaded %d of %d corpus chunks from %s", len(self._chunks), self._raw_count, origin)

    # ---------- Ranking ----------
    def rank(self, query_embedding: Sequence[float], k: int = 3) -> List[RankedChunk]:
        if not self._loaded:
            raise NotInitialized("SimilarityIndex has not been loaded. Call load() first.")

        if self._raw_count == 0:
            log.debug("rank: corpus is empty, no context")
            return []
        if not self._chunks:
            log.warning("rank: all %d corpus entries were filtered out, no context", self._raw_count)
            return []

        q = np.asarray(query_embedding, dtype=float)
        ranked: List[RankedChunk] = []
        for chunk in self._chunks:
            if len(chunk.embedding) != len(q):
                log.error(
                    "Vector length mismatch: query=%d, chunk %s=%d. "
                    "Corpus and query must use the same embedding model.",
                    len(q), chunk.id, len(chunk.embedding),
                )
                raise DimensionMismatch(len(q), len(chunk.embedding), chunk.id)
            ranked.append(RankedChunk(
                id=chunk.id,
                text=chunk.text,
                embedding=chunk.embedding,
                metadata=chunk.metadata,
                similarity=cosine_similarity(q, chunk.embedding),
            ))

        ranked.sort(key=lambda r: r.similarity, reverse=True)
        return ranked[:max(0, k)]
