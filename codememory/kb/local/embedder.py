"""
Local embedder for the Knowledge Base — feature-engineered TF-IDF vectors.

Turns arbitrary text (chunk renderings and queries alike) into fixed-size
384-dimensional vectors without any model or network call.  Each vector
combines:

* TF-IDF weights over a growing vocabulary of words and word bigrams,
* 15 code-keyword group features (slots 300-314),
* 7 structural punctuation features (slots 320-326),

and is L2-normalised.

Every embedded text is added to the corpus, so IDF (and therefore the
vector produced for a given text) drifts as more text is seen.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBED_DIMENSIONS = 384

IDF_MODE_REFERENCE = "reference"
IDF_MODE_INCREMENTAL = "incremental"
IDF_MODES = (IDF_MODE_REFERENCE, IDF_MODE_INCREMENTAL)

# (keywords, slot): value is the fraction of the group found in the text
_KEYWORD_FEATURES: list[tuple[tuple[str, ...], int]] = [
    (("function", "def", "func", "method"), 300),
    (("class", "struct", "interface"), 301),
    (("import", "require", "include", "from"), 302),
    (("export", "module.exports", "public"), 303),
    (("async", "await", "promise", "then"), 304),
    (("return", "yield"), 305),
    (("if", "else", "switch", "case"), 306),
    (("for", "while", "foreach", "map"), 307),
    (("try", "catch", "throw", "error"), 308),
    (("const", "let", "var", "val"), 309),
    (("new", "constructor", "init"), 310),
    (("get", "set", "getter", "setter"), 311),
    (("api", "endpoint", "route", "rest"), 312),
    (("test", "spec", "describe", "it", "expect"), 313),
    (("database", "query", "sql", "select"), 314),
]

# (pattern, slot): value is min(matches / 10, 1)
_STRUCTURE_FEATURES: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\{.*\}", re.DOTALL), 320),    # blocks
    (re.compile(r"\(.*\)", re.DOTALL), 321),    # parentheses
    (re.compile(r"\[.*\]", re.DOTALL), 322),    # arrays
    (re.compile(r"=>"), 323),                   # arrow functions
    (re.compile(r"\."), 324),                   # member access
    (re.compile(r"::"), 325),                   # scope resolution
    (re.compile(r"->"), 326),                   # pointer access
]

_NON_WORD_RE = re.compile(r"[^\w\s]", re.ASCII)


class EmbeddingError(RuntimeError):
    """Raised when a batch of texts cannot be embedded."""


# ---------------------------------------------------------------------------
# Tokenisation & hashing
# ---------------------------------------------------------------------------

def tokenize(text: str) -> list[str]:
    """
    Split *text* into lowercase words followed by adjacent-word bigrams.

    ``"Get User"`` → ``["get", "user", "get_user"]``
    """
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    bigrams = [f"{words[i]}_{words[i + 1]}" for i in range(len(words) - 1)]
    return words + bigrams


def string_hash(value: str) -> int:
    """Signed 32-bit ``h = h * 31 + ord(c)`` string hash."""
    h = 0
    for ch in value:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


# ---------------------------------------------------------------------------
# Corpus statistics
# ---------------------------------------------------------------------------

@dataclass
class CorpusStats:
    """
    Vocabulary, document list and IDF table shared by every embedding
    produced by one :class:`EmbeddingGenerator`.

    The vocabulary is append-only: a token keeps its index forever.

    In ``reference`` mode document frequency is the number of documents
    whose lowercased text *contains the token as a substring*, recomputed
    from scratch on every :meth:`recompute_idf` call — O(documents ×
    vocabulary).  In ``incremental`` mode it is the number of documents
    whose token set contains the token, maintained as counters when
    documents are added, so a recompute is O(vocabulary).
    """

    mode: str = IDF_MODE_REFERENCE
    vocabulary: dict[str, int] = field(default_factory=dict)
    idf: dict[str, float] = field(default_factory=dict)
    documents: list[str] = field(default_factory=list)
    doc_freq: Counter = field(default_factory=Counter)

    def add_document(self, text: str) -> list[str]:
        """Register *text* in the corpus and return its tokens."""
        tokens = tokenize(text)
        self.documents.append(text.lower())
        for token in tokens:
            if token not in self.vocabulary:
                self.vocabulary[token] = len(self.vocabulary)
        if self.mode == IDF_MODE_INCREMENTAL:
            self.doc_freq.update(set(tokens))
        return tokens

    def recompute_idf(self) -> None:
        """Rebuild ``idf`` as ``ln(N / df)`` for every token with ``df > 0``."""
        n_docs = len(self.documents) or 1
        self.idf.clear()
        if self.mode == IDF_MODE_INCREMENTAL:
            for token, df in self.doc_freq.items():
                self.idf[token] = math.log(n_docs / df)
            return

        for token in self.vocabulary:
            df = 0
            for doc in self.documents:
                if token in doc:
                    df += 1
            if df > 0:
                self.idf[token] = math.log(n_docs / df)


# ---------------------------------------------------------------------------
# EmbeddingGenerator
# ---------------------------------------------------------------------------

class EmbeddingGenerator:
    """
    Deterministic text → vector function over a growing corpus.

    Parameters
    ----------
    dimension:
        Output vector length.
    idf_mode:
        ``"reference"`` (substring document frequency, full rescan) or
        ``"incremental"`` (token document-frequency counters).
    """

    def __init__(
        self,
        dimension: int = EMBED_DIMENSIONS,
        idf_mode: str = IDF_MODE_REFERENCE,
    ) -> None:
        if idf_mode not in IDF_MODES:
            raise ValueError(
                f"Unknown idf_mode {idf_mode!r}; expected one of {IDF_MODES}"
            )
        self.dimension = dimension
        self.stats = CorpusStats(mode=idf_mode)

    @property
    def vocabulary_size(self) -> int:
        return len(self.stats.vocabulary)

    @property
    def document_count(self) -> int:
        return len(self.stats.documents)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed(self, text: str) -> list[float]:
        """Embed a single text.  The text joins the corpus first."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Iterable[str]) -> list[list[float]]:
        """
        Add every text to the corpus, recompute IDF once, then embed each.

        Raises
        ------
        EmbeddingError
            If any text cannot be embedded.  No vectors are returned for
            the batch in that case.
        """
        texts = list(texts)
        if not texts:
            return []
        try:
            token_lists = [self.stats.add_document(text) for text in texts]
            self.stats.recompute_idf()
            vectors = [
                self._text_to_vector(text, tokens)
                for text, tokens in zip(texts, token_lists)
            ]
        except Exception as exc:
            raise EmbeddingError(
                f"Failed to embed batch of {len(texts)} text(s): {exc}"
            ) from exc
        logger.debug(
            "[Embedder] Embedded %d text(s) — vocabulary=%d documents=%d",
            len(texts), self.vocabulary_size, self.document_count,
        )
        return vectors

    # ------------------------------------------------------------------
    # Vector assembly
    # ------------------------------------------------------------------

    def _text_to_vector(
        self, text: str, tokens: Optional[list[str]] = None,
    ) -> list[float]:
        if tokens is None:
            tokens = tokenize(text)
        vector = [0.0] * self.dimension

        counts = Counter(tokens)
        total = len(tokens)
        for token, count in counts.items():
            index = self.stats.vocabulary.get(token)
            if index is None:
                continue
            weight = (count / total) * self.stats.idf.get(token, 0.0)
            if index < self.dimension:
                vector[index] = weight
            else:
                # Fold out-of-range tokens back in; collisions accumulate
                slot = abs(string_hash(token)) % self.dimension
                vector[slot] += weight

        self._add_code_features(text, vector)

        magnitude = math.sqrt(sum(v * v for v in vector))
        if magnitude > 0:
            return [v / magnitude for v in vector]
        return vector

    def _add_code_features(self, text: str, vector: list[float]) -> None:
        """Overwrite the reserved keyword and structure slots."""
        lower = text.lower()
        for keywords, slot in _KEYWORD_FEATURES:
            hits = sum(1 for kw in keywords if kw in lower)
            if hits > 0 and slot < self.dimension:
                vector[slot] = hits / len(keywords)

        for pattern, slot in _STRUCTURE_FEATURES:
            matches = len(pattern.findall(text))
            if matches and slot < self.dimension:
                vector[slot] = min(matches / 10, 1.0)
