# gateway/prompting.py
from __future__ import annotations
from typing import Sequence

from .index import RankedChunk


REFUSAL_SENTENCE = "Does not seem to be related to our topic."

CONTEXT_TEMPLATE = """\
You are answering a question using excerpts from the **"{title}"**. Use only the provided context to answer the question.

If the context does not relate to the question, reply with:
"{refusal}"

Do **not** assume anything outside the context. If you include information that is not found directly in the context, you **must state** that it is based on your own limited knowledge and **not** from "The Book".

---

**Context:**
{context}

---

**Question:**
{user_input}

**Answer:**
"""

FALLBACK_TEMPLATE = """\
No relevant context was found from the book *"{title}"*.

Start your answer with:
{refusal}

If you include any information, you must explicitly state that it is based on your own limited knowledge and **not** from "The Book".

---

**Question:**
{user_input}

**Answer:**
"""


def preprocess_input(text: str) -> str:
    return " ".join(text.strip().split())


class PromptBuilder:
    """
    Baut den Prompt für /api/generate aus Query + gerankten Chunks.
    Reine Funktion: kein I/O, deterministisch.
    """
    def __init__(self, title: str) -> None:
        self.title = title

    def assemble(self, user_input: str, chunks: Sequence[RankedChunk]) -> str:
        query = preprocess_input(user_input)
        if chunks:
            # Chunk-Texte unverändert übernehmen
            context = "\n\n".join(c.text for c in chunks)
            return CONTEXT_TEMPLATE.format(
                title=self.title,
                refusal=REFUSAL_SENTENCE,
                context=context,
                user_input=query,
            )
        return FALLBACK_TEMPLATE.format(
            title=self.title,
            refusal=REFUSAL_SENTENCE,
            user_input=query,
        )
