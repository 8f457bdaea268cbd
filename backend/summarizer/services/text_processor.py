"""
Text processing service
Sentence segmentation, tokenisation, regex entity extraction and TF-IDF
sentence embeddings used by the extractive engine and the evaluator.
"""
import math
import re
import unicodedata
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from summarizer.schemas.summarization import NamedEntity, ProcessedDocument

logger = structlog.get_logger()


ABBREVIATIONS = {
    "dr", "mr", "mrs", "ms", "prof", "sr", "jr", "st", "vs", "etc", "inc",
    "corp", "ltd", "co", "phd", "md", "e.g", "i.e", "no", "fig", "approx",
}

STOP_WORDS = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can could did do does doing down during
each few for from further had has have having he her here hers herself him
himself his how i if in into is it its itself just me more most my myself no nor
not now of off on once only or other our ours ourselves out over own same she
should so some such than that the their theirs them themselves then there these
they this those through to too under until up very was we were what when where
which while who whom why will with would you your yours yourself yourselves
""".split())

MIN_SENTENCE_CHARS = 10

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
# Split after terminal punctuation, optionally followed by one closing quote or bracket
_BOUNDARY_RE = re.compile(r"(?:(?<=[.!?])|(?<=[.!?][\"')\]”’]))\s+")
_WORD_RE = re.compile(r"\b\w[\w'-]*\b")
_SYLLABLE_RE = re.compile(r"[aeiouy]+")

_ENTITY_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("ORG", re.compile(r"\b(?:[A-Z][\w&]*\s)+(?:Inc|Corp|LLC|Ltd|GmbH|Co)\b\.?")),
    ("MONEY", re.compile(r"\$\d[\d,]*(?:\.\d+)?(?:\s(?:million|billion|thousand))?")),
    ("PERCENT", re.compile(r"\b\d+(?:\.\d+)?%")),
    ("DATE", re.compile(
        r"\b\d{1,2}/\d{1,2}/\d{4}\b"
        r"|\b(?:January|February|March|April|May|June|July|August|September|October|November|December)"
        r"\s\d{1,2}(?:,\s\d{4})?\b"
        r"|\b(?:1[89]|20)\d{2}\b"
    )),
    ("PERSON", re.compile(r"\b(?:(?:Dr|Mr|Mrs|Ms|Prof)\.\s)?[A-Z][a-z]+\s[A-Z][a-z]+\b")),
]


class TextProcessor:
    """Lightweight lexical analysis; no trained models"""

    @staticmethod
    def normalize(text: str) -> str:
        """
        Normalise text for hashing and comparison

        Args:
            text: raw input

        Returns:
            NFC text with LF newlines and single spaces
        """
        if not text:
            return ""
        text = unicodedata.normalize("NFC", text)
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        return " ".join(text.split())

    @staticmethod
    def _should_merge(current: str, following: str) -> bool:
        """Whether a split point was a false sentence boundary"""
        words = current.split()
        if not words:
            return True
        last = words[-1].strip("\"'()[]“”‘’")
        if last.endswith("."):
            bare = last[:-1].lower()
            if bare in ABBREVIATIONS:
                return True
            # Initials such as "J."
            if len(bare) == 1 and bare.isalpha():
                return True
        if following[:1].islower():
            return True
        # Unbalanced straight quotes mean the boundary sits inside a quotation
        if current.count('"') % 2 == 1:
            return True
        return False

    @classmethod
    def segment_sentences(cls, text: str) -> List[str]:
        """
        Split text into sentences

        Handles abbreviations, initials, decimals, quotations and a
        lowercase continuation after a period. Fragments of
        MIN_SENTENCE_CHARS characters or fewer are dropped.
        """
        if not text or not text.strip():
            return []
        text = unicodedata.normalize("NFC", text).replace("\r\n", "\n").replace("\r", "\n")

        sentences: List[str] = []
        for paragraph in _PARAGRAPH_RE.split(text):
            paragraph = " ".join(paragraph.split())
            if not paragraph:
                continue
            pieces = _BOUNDARY_RE.split(paragraph)
            merged: List[str] = []
            for piece in pieces:
                if merged and cls._should_merge(merged[-1], piece):
                    merged[-1] = f"{merged[-1]} {piece}"
                else:
                    merged.append(piece)
            sentences.extend(s.strip() for s in merged)

        return [s for s in sentences if len(s) > MIN_SENTENCE_CHARS]

    @staticmethod
    def words(text: str) -> List[str]:
        """Lowercased word tokens without filtering"""
        return _WORD_RE.findall(text.lower())

    @classmethod
    def tokenize(cls, sentence: str) -> List[str]:
        """Lowercased content tokens (stop words and 1-char tokens removed)"""
        return [w for w in cls.words(sentence) if len(w) > 1 and w not in STOP_WORDS]

    @staticmethod
    def extract_entities(text: str) -> List[NamedEntity]:
        """
        Regex entity extraction

        Patterns are applied in priority order; a span already claimed by an
        earlier pattern is not reported again.
        """
        entities: List[NamedEntity] = []
        taken: List[Tuple[int, int]] = []
        for entity_type, pattern in _ENTITY_PATTERNS:
            for match in pattern.finditer(text):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                taken.append((start, end))
                entities.append(NamedEntity(
                    text=match.group().strip(),
                    type=entity_type,
                    start=start,
                    end=end,
                    confidence=0.7,
                ))
        entities.sort(key=lambda e: e.start)
        return entities

    @staticmethod
    def tfidf_embeddings(tokens: Sequence[Sequence[str]]) -> np.ndarray:
        """
        TF-IDF vectors, one L2-normalised row per sentence

        Args:
            tokens: content tokens per sentence

        Returns:
            array of shape (sentences, vocabulary); empty rows stay zero
        """
        vocabulary = sorted({t for sentence in tokens for t in sentence})
        if not tokens or not vocabulary:
            return np.zeros((len(tokens), 0))
        index = {term: i for i, term in enumerate(vocabulary)}

        matrix = np.zeros((len(tokens), len(vocabulary)))
        for row, sentence in enumerate(tokens):
            if not sentence:
                continue
            for term, count in Counter(sentence).items():
                matrix[row, index[term]] = count / len(sentence)

        document_frequency = np.count_nonzero(matrix > 0, axis=0)
        idf = np.log((1 + len(tokens)) / (1 + document_frequency)) + 1.0
        matrix *= idf

        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return matrix / norms

    @staticmethod
    def count_syllables(word: str) -> int:
        word = word.lower()
        if len(word) <= 3:
            return 1
        word = re.sub(r"(?:[^laeiouy]es|ed|[^laeiouy]e)$", "", word)
        word = re.sub(r"^y", "", word)
        return max(1, len(_SYLLABLE_RE.findall(word)))

    @classmethod
    def readability(cls, sentences: Sequence[str]) -> float:
        """Flesch reading ease clamped to 0-100"""
        words = [w for s in sentences for w in cls.words(s)]
        if not sentences or not words:
            return 0.0
        syllables = sum(cls.count_syllables(w) for w in words)
        score = 206.835 - 1.015 * (len(words) / len(sentences)) - 84.6 * (syllables / len(words))
        return max(0.0, min(100.0, score))

    @staticmethod
    def top_keywords(tokens: Sequence[Sequence[str]], limit: int = 10) -> List[str]:
        counts = Counter(t for sentence in tokens for t in sentence if len(t) > 2)
        return [term for term, _ in counts.most_common(limit)]

    @classmethod
    def process(cls, text: str, sentences: Optional[List[str]] = None) -> ProcessedDocument:
        """
        Analyse a text once for a single request

        Args:
            text: input text
            sentences: pre-segmented sentences, segmented from text when omitted

        Returns:
            ProcessedDocument
        """
        if sentences is None:
            sentences = cls.segment_sentences(text)
        tokens = [tuple(cls.tokenize(s)) for s in sentences]
        embeddings = cls.tfidf_embeddings(tokens)
        embeddings.flags.writeable = False
        word_counts = [len(s.split()) for s in sentences]

        document = ProcessedDocument(
            sentences=tuple(sentences),
            tokens=tuple(tokens),
            entities=tuple(cls.extract_entities(text)),
            embeddings=embeddings,
            avg_sentence_length=(sum(word_counts) / len(word_counts)) if word_counts else 0.0,
            word_count=len(text.split()),
            readability=cls.readability(sentences),
            keywords=tuple(cls.top_keywords(tokens)),
        )
        logger.debug("Text processed",
                     sentences=len(document.sentences),
                     entities=len(document.entities),
                     vocabulary=embeddings.shape[1] if embeddings.ndim == 2 else 0)
        return document


def jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0 or math.isnan(norm):
        return 0.0
    return float(np.dot(a, b) / norm)
