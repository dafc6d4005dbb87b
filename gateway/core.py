# gateway/core.py
from __future__ import annotations
from typing import Dict, Optional
import json
import logging
import time

from .errors import DimensionMismatch, EmbeddingError, GenerationError, NotInitialized
from .index import SimilarityIndex
from .llm import OllamaClient
from .prompting import PromptBuilder

log = logging.getLogger(__name__)
metrics_log = logging.getLogger("metrics")

FALLBACK_ANSWER = "Failed to get a response from the AI model."
EMPTY_ANSWER = "No response from AI model."


class RetrievalPipeline:
    """
    Orchestrierung: Query -> Embedding -> Ranking -> Prompt -> Generate.
    Fehler im Embedding/Ranking/Generate enden immer im festen Fallback-Text,
    nie in einer Exception Richtung Verbindung (Ausnahme: NotInitialized).
    """

    def __init__(self, index: SimilarityIndex, prompting: PromptBuilder, llm: OllamaClient, top_k: int = 3) -> None:
        self.index = index
        self.prompting = prompting
        self.llm = llm
        self.top_k = top_k

    async def answer(self, query: str) -> str:
        if not self.index.is_loaded:
            raise NotInitialized("RetrievalPipeline used before the corpus was loaded.")

        # -------- Messung: Start --------
        t0 = time.perf_counter()
        t_embed = None
        t_rank = None
        t_prompt = None
        t_generate = None
        n_chunks = 0
        error_type: Optional[str] = None
        # --------------------------------

        try:
            query_embedding = await self.llm.embed(query)
            t_embed = time.perf_counter()

            chunks = self.index.rank(query_embedding, k=self.top_k)
            n_chunks = len(chunks)
            t_rank = time.perf_counter()

            prompt = self.prompting.assemble(query, chunks)
            t_prompt = time.perf_counter()

            text = (await self.llm.generate(prompt)).strip()
            t_generate = time.perf_counter()
            answer = text or EMPTY_ANSWER
        except DimensionMismatch as e:
            log.error("Embedding model mismatch between corpus and query: %s", e)
            error_type = "dimension_mismatch"
            answer = FALLBACK_ANSWER
        except EmbeddingError as e:
            log.warning("Query aborted, embedding failed: %s", e)
            error_type = "embedding_error"
            answer = FALLBACK_ANSWER
        except GenerationError as e:
            log.warning("Generation failed: %s", e)
            error_type = "generation_error"
            answer = FALLBACK_ANSWER

        metrics = self._build_metrics(t0, t_embed, t_rank, t_prompt, t_generate, n_chunks, error_type)
        metrics_log.info(json.dumps(metrics, ensure_ascii=False))
        return answer

    @staticmethod
    def _ms(a: Optional[float], b: Optional[float]) -> Optional[float]:
        if a is None or b is None:
            return None
        return round((b - a) * 1000.0, 2)

    def _build_metrics(
        self,
        t0: float,
        t_embed: Optional[float],
        t_rank: Optional[float],
        t_prompt: Optional[float],
        t_generate: Optional[float],
        n_chunks: int,
        error_type: Optional[str],
    ) -> Dict:
        return {
            "durations_ms": {
                "embedding": self._ms(t0, t_embed),
                "ranking": self._ms(t_embed, t_rank),
                "prompt_build": self._ms(t_rank, t_prompt),
                "generate": self._ms(t_prompt, t_generate),
                "total": self._ms(t0, time.perf_counter()),
            },
            "context_chunks": n_chunks,
            "grounded": n_chunks > 0,
            "error_type": error_type,
            "ok": error_type is None,
        }
