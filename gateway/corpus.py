# gateway/corpus.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List
import logging
import re

from pypdf import PdfReader

log = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\S+")


def _window_starts(n_words: int, size: int, overlap: int) -> List[int]:
    # letztes Fenster endet genau am Textende, kein angehängter Rest-Chunk
    step = max(1, size - overlap)
    last = max(0, n_words - size)
    starts = list(range(0, last + 1, step))
    if starts[-1] < last:
        starts.append(starts[-1] + step)
    return starts


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """
    Zerlegt einen Quelltext in Chunks für die Korpus-Datei.

    Fenster aus `size` Wörtern, benachbarte Fenster teilen sich `overlap`
    Wörter. Die Chunks landen später wörtlich im Prompt-Kontext, deshalb
    bleiben Schreibweise und Satzzeichen erhalten.
    """
    words = _WORD_RE.findall(text)
    if not words:
        return []
    return [" ".join(words[s:s + size]) for s in _window_starts(len(words), size, overlap)]


def _read_plain(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="ignore")


def _read_pdf(path: Path) -> str:
    # Seiten ohne Textebene (Scans) liefern None
    pages = PdfReader(str(path)).pages
    return "\n".join(filter(None, (page.extract_text() for page in pages)))


_READERS: Dict[str, Callable[[Path], str]] = {
    ".txt": _read_plain,
    ".md": _read_plain,
    ".pdf": _read_pdf,
}


def read_text(path: Path) -> str:
    """Rohtext einer Quelldatei; ValueError für nicht unterstützte Endungen."""
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported file type: {path.suffix or path.name}")
    return reader(path)


def iter_source_files(paths: Iterable[Path]) -> List[Path]:
    files: List[Path] = []
    for p in paths:
        if p.is_dir():
            files.extend(sorted(f for f in p.rglob("*") if f.is_file() and f.suffix.lower() in _READERS))
        elif p.is_file():
            files.append(p)
        else:
            log.warning("Skipping missing path: %s", p)
    return files


def build_corpus(
    files: Iterable[Path],
    embed: Callable[[str], List[float]],
    size: int,
    overlap: int,
) -> Dict[str, Any]:
    """
    Liest, chunked und embedded alle Dateien.
    Ergebnis ist das Dokument, das SimilarityIndex.load() erwartet:
    {"embeddings": [{id, text, embedding, source}, ...]}
    """
    entries: List[Dict[str, Any]] = []
    for path in files:
        try:
            text = read_text(path)
        except ValueError as e:
            log.warning("Skipping %s: %s", path, e)
            continue
        chunks = chunk_text(text, size, overlap)
        for n, chunk in enumerate(chunks):
            entries.append({
                "id": f"{path.stem}-{n}",
                "text": chunk,
                "embedding": embed(chunk),
                "source": path.name,
            })
        log.info("%s: %d chunks", path.name, len(chunks))
    return {"embeddings": entries}
