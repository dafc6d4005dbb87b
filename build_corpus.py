#!/usr/bin/env python3
"""
Baut die Korpus-Datei (EMBEDDING_FILE_PATH) aus lokalen Dokumenten:
Dateien lesen -> chunken -> über Ollama /api/embeddings embedden -> JSON.

Beispiel:
  python build_corpus.py data/source --out data/embeddings.json
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

import requests

from gateway.config import settings
from gateway.corpus import build_corpus, iter_source_files

log = logging.getLogger("build_corpus")


def make_embedder(base_url: str, model: str, timeout: float):
    url = base_url.rstrip("/") + "/api/embeddings"
    session = requests.Session()

    def embed(text: str) -> List[float]:
        resp = session.post(url, json={"model": model, "prompt": text}, timeout=timeout)
        resp.raise_for_status()
        vec = resp.json().get("embedding")
        if not isinstance(vec, list) or not vec:
            raise RuntimeError("Invalid response from Ollama embeddings API")
        return vec

    return embed


def main() -> None:
    parser = argparse.ArgumentParser(description="Erzeugt die Embedding-Datei für das Chat-Gateway.")
    parser.add_argument("paths", nargs="+", help="Dateien oder Ordner (.txt, .md, .pdf)")
    parser.add_argument("--out", required=True, help="Ziel-JSON, z.B. data/embeddings.json")
    parser.add_argument("--base-url", default=settings.OLLAMA_API_BASE_URL, help="Ollama Basis-URL")
    parser.add_argument("--model", default=settings.EMBEDDING_MODEL, help="Embedding-Modell")
    parser.add_argument("--chunk-size", type=int, default=settings.CHUNK_SIZE)
    parser.add_argument("--chunk-overlap", type=int, default=settings.CHUNK_OVERLAP)
    parser.add_argument("--timeout", type=float, default=settings.LLM_TIMEOUT_SECONDS)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)

    if args.chunk_overlap >= args.chunk_size:
        parser.error("--chunk-overlap must be smaller than --chunk-size")

    files = iter_source_files(Path(p) for p in args.paths)
    if not files:
        print("No input files found.")
        sys.exit(1)

    embed = make_embedder(args.base_url, args.model, args.timeout)
    try:
        doc = build_corpus(files, embed, args.chunk_size, args.chunk_overlap)
    except requests.RequestException as e:
        print("Connection error:", e)
        sys.exit(1)

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(doc, ensure_ascii=False), encoding="utf-8")
    print(f"Wrote {len(doc['embeddings'])} chunks from {len(files)} files to {out}")


if __name__ == "__main__":
    main()
