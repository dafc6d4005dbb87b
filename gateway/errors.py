# gateway/errors.py
"""
Fehlerklassen des Gateways.

Die Blatt-Komponenten (Index, LLM-Client, Protokoll) werfen diese Fehler;
übersetzt werden sie erst an der Pipeline- bzw. Verbindungsgrenze.
"""


class GatewayError(Exception):
    """Basisklasse aller Gateway-Fehler."""


class MalformedMessage(GatewayError):
    """Eingehender Frame ist kein gültiges JSON-Objekt mit `type`."""


class DimensionMismatch(GatewayError):
    """Query- und Korpus-Embedding haben unterschiedliche Länge."""

    def __init__(self, query_len: int, chunk_len: int, chunk_id: str | None = None) -> None:
        self.query_len = query_len
        self.chunk_len = chunk_len
        self.chunk_id = chunk_id
        where = f" (chunk {chunk_id})" if chunk_id is not None else ""
        super().__init__(
            f"Vector length mismatch: query={query_len}, chunk={chunk_len}{where}. "
            "Check your embedding models."
        )


class EmbeddingError(GatewayError):
    """Remote-Embedding fehlgeschlagen oder Antwort ohne Vektor."""


class GenerationError(GatewayError):
    """Remote-Generierung fehlgeschlagen oder Antwort ohne Text."""


class NotInitialized(GatewayError):
    """Pipeline/Index benutzt, bevor der Korpus geladen wurde."""


class CorpusLoadError(GatewayError):
    """Korpus-Datei vorhanden, aber nicht lesbar/parsbar."""
