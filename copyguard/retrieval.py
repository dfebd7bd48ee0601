"""
CopyGuard - Policy document retrieval.

A ``PolicyIndex`` is the capability the generative evaluator uses to find
policy text relevant to a piece of copy. Implementations are chosen when the
application is assembled; nothing in the core branches on which one it got.

    index = TfidfPolicyIndex()
    index.index("brand-guide", open("brand.txt").read(), {"filename": "brand.txt"})
    chunks = index.search("Our phone is 100% waterproof", top_k=3)
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import RetrievedChunk

logger = logging.getLogger("copyguard.retrieval")

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping windows, preferring paragraph boundaries."""
    if chunk_size <= overlap:
        raise ValueError("chunk_size must be larger than overlap")

    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    chunks: list[str] = []
    current = ""
    for paragraph in paragraphs:
        if len(current) + len(paragraph) + 2 <= chunk_size:
            current = f"{current}\n\n{paragraph}" if current else paragraph
            continue
        if current:
            chunks.append(current)
            current = ""
        if len(paragraph) <= chunk_size:
            current = paragraph
            continue
        # Sliding window over long paragraphs
        start = 0
        while start < len(paragraph):
            chunks.append(paragraph[start : start + chunk_size])
            if start + chunk_size >= len(paragraph):
                break
            start += chunk_size - overlap
    if current:
        chunks.append(current)
    return chunks


def format_context(chunks: list[RetrievedChunk]) -> str:
    """Join retrieved chunks into the context block handed to an evaluator."""
    return "\n---\n".join(c.text for c in chunks if c.text.strip())


class PolicyIndex:
    """Base class for policy document indexes."""

    name = "base"

    def search(self, query: str, top_k: int = 5) -> list[RetrievedChunk]:
        raise NotImplementedError

    def index(self, doc_id: str, text: str, metadata: Optional[dict[str, Any]] = None) -> int:
        """Index a document's text. Returns the number of chunks stored."""
        raise NotImplementedError

    def delete(self, doc_id: str) -> bool:
        raise NotImplementedError

    def stats(self) -> dict[str, Any]:
        return {"provider": self.name, "document_count": 0, "chunk_count": 0}


class NullPolicyIndex(PolicyIndex):
    """Stub index: accepts documents and never returns anything."""

    name = "none"

    def search(self, query: str, top_k: int = 5) -> list[RetrievedChunk]:
        logger.debug("Null policy index search for %r", query[:50])
        return []

    def index(self, doc_id: str, text: str, metadata: Optional[dict[str, Any]] = None) -> int:
        logger.debug("Null policy index ignoring document %s", doc_id)
        return 0

    def delete(self, doc_id: str) -> bool:
        return False


@dataclass
class _IndexedDocument:
    doc_id: str
    chunks: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)


class TfidfPolicyIndex(PolicyIndex):
    """In-memory TF-IDF index over chunked policy documents.

    The vectorizer is refit whenever the document set changes; searches rank
    chunks by cosine similarity and drop anything under ``min_score``.
    """

    name = "tfidf"

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
        min_score: float = 0.05,
        max_features: int = 5000,
    ):
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.min_score = min_score
        self.max_features = max_features
        self._documents: dict[str, _IndexedDocument] = {}
        self._lock = threading.Lock()
        self._vectorizer = None
        self._matrix = None
        self._chunk_index: list[tuple[str, str]] = []

    def _rebuild(self) -> None:
        from sklearn.feature_extraction.text import TfidfVectorizer

        self._chunk_index = [
            (doc.doc_id, chunk)
            for doc in self._documents.values()
            for chunk in doc.chunks
        ]
        if not self._chunk_index:
            self._vectorizer = None
            self._matrix = None
            return
        self._vectorizer = TfidfVectorizer(
            max_features=self.max_features, stop_words="english"
        )
        try:
            self._matrix = self._vectorizer.fit_transform(
                [chunk for _, chunk in self._chunk_index]
            )
        except ValueError:
            # Every chunk was stop words only
            self._vectorizer = None
            self._matrix = None

    def index(self, doc_id: str, text: str, metadata: Optional[dict[str, Any]] = None) -> int:
        chunks = chunk_text(text, self.chunk_size, self.overlap)
        with self._lock:
            self._documents[doc_id] = _IndexedDocument(doc_id, chunks, metadata or {})
            self._rebuild()
        logger.info(f"Indexed policy document {doc_id} ({len(chunks)} chunks)")
        return len(chunks)

    def delete(self, doc_id: str) -> bool:
        with self._lock:
            if doc_id not in self._documents:
                return False
            del self._documents[doc_id]
            self._rebuild()
        logger.info(f"Removed policy document {doc_id}")
        return True

    def search(self, query: str, top_k: int = 5) -> list[RetrievedChunk]:
        from sklearn.metrics.pairwise import cosine_similarity

        with self._lock:
            if self._vectorizer is None or self._matrix is None or not query.strip():
                return []
            scores = cosine_similarity(self._vectorizer.transform([query]), self._matrix)[0]
            ranked = sorted(enumerate(scores), key=lambda item: item[1], reverse=True)
            results = []
            for idx, score in ranked[:top_k]:
                if score < self.min_score:
                    break
                doc_id, chunk = self._chunk_index[idx]
                results.append(RetrievedChunk(text=chunk, score=float(score), doc_id=doc_id))
            return results

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "provider": self.name,
                "document_count": len(self._documents),
                "chunk_count": len(self._chunk_index),
            }


def create_policy_index(backend: str) -> PolicyIndex:
    """Build a policy index from its configured name."""
    if backend == "tfidf":
        return TfidfPolicyIndex()
    if backend in ("none", "", None):
        return NullPolicyIndex()
    raise ValueError(f"Unknown retrieval backend: {backend}")
