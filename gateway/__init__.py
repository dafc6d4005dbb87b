# gateway/__init__.py
"""
Chat-Gateway mit RAG-Antworten über WebSocket.
Struktur:
- config.py      : Konfiguration via Pydantic Settings
- errors.py      : Fehlerklassen (MalformedMessage, DimensionMismatch, ...)
- index.py       : SimilarityIndex (Korpus laden, Cosine-Ranking)
- prompting.py   : PromptBuilder (Kontext-/Fallback-Prompt)
- llm.py         : OllamaClient (Embeddings + Generate)
- core.py        : RetrievalPipeline (Query→Embedding→Ranking→Prompt→Antwort)
- sessions.py    : SessionRegistry (UUID → User, Reconnect)
- protocol.py    : Wire-Frames (Parsen eingehend, Bauen ausgehend)
- connection.py  : Connection + ConnectionHandler (Zustandsmaschine pro Socket)
- heartbeat.py   : HeartbeatScheduler (Liveness-Frames an alle Verbindungen)
- corpus.py      : Chunking + Korpus-Dokument für build_corpus.py
- api.py         : FastAPI App (/health, /chat, /ws)
"""
