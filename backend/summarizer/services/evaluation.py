"""
Evaluation engine
Lexical quality heuristics (ROUGE, BLEU, overlap-based similarity) for
generated summaries. None of these use trained models.
"""
import math
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

import structlog

from summarizer.schemas.summarization import EvaluationResult, SummaryMetrics
from summarizer.services.text_processor import TextProcessor, jaccard

logger = structlog.get_logger()


OVERALL_WEIGHTS: Dict[str, float] = {
    "rouge1": 0.15,
    "rouge2": 0.15,
    "rouge_l": 0.10,
    "bleu": 0.10,
    "semantic_similarity": 0.20,
    "coherence": 0.10,
    "compression": 0.05,
    "entity_preservation": 0.10,
    "factual_consistency": 0.05,
}

TARGET_COMPRESSION = 0.3
FACT_SENTENCES = 3
FACT_MATCH_THRESHOLD = 0.5

ENTITY_STOP_WORDS = {
    "The", "A", "An", "And", "Or", "But", "In", "On", "At", "To", "For", "Of",
    "With", "By", "This", "That", "It", "We", "They", "He", "She", "I",
}

_ENTITY_RE = re.compile(r"\b[A-Z][a-zA-Z]+\b")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _ngrams(words: Sequence[str], n: int) -> Counter:
    return Counter(tuple(words[i:i + n]) for i in range(len(words) - n + 1))


def _lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    if not a or not b:
        return 0
    previous = [0] * (len(b) + 1)
    for token_a in a:
        current = [0]
        for j, token_b in enumerate(b, start=1):
            if token_a == token_b:
                current.append(previous[j - 1] + 1)
            else:
                current.append(max(previous[j], current[j - 1]))
        previous = current
    return previous[-1]


class EvaluationEngine:
    """Scores a summary against its source and an optional reference"""

    @staticmethod
    def rouge_n(summary: str, reference: str, n: int) -> float:
        """Clipped n-gram recall of the summary against the reference"""
        reference_grams = _ngrams(TextProcessor.words(reference), n)
        total = sum(reference_grams.values())
        if total == 0:
            return 0.0
        summary_grams = _ngrams(TextProcessor.words(summary), n)
        overlap = sum(min(count, summary_grams[gram]) for gram, count in reference_grams.items())
        return _clamp(overlap / total)

    @staticmethod
    def rouge_l(summary: str, reference: str) -> float:
        """Longest common subsequence over reference length"""
        reference_words = TextProcessor.words(reference)
        if not reference_words:
            return 0.0
        return _clamp(_lcs_length(TextProcessor.words(summary), reference_words) / len(reference_words))

    @staticmethod
    def bleu(summary: str, reference: str, max_n: int = 4) -> float:
        """
        Sentence BLEU with add-one smoothing above unigrams

        Args:
            summary: candidate text
            reference: reference text
            max_n: highest n-gram order, lowered for short texts

        Returns:
            BLEU in [0, 1]; identical texts score 1.0
        """
        candidate = TextProcessor.words(summary)
        reference_words = TextProcessor.words(reference)
        if not candidate or not reference_words:
            return 0.0
        max_n = min(max_n, len(candidate), len(reference_words))

        log_precision = 0.0
        for n in range(1, max_n + 1):
            candidate_grams = _ngrams(candidate, n)
            reference_grams = _ngrams(reference_words, n)
            matches = sum(min(count, reference_grams[gram]) for gram, count in candidate_grams.items())
            total = sum(candidate_grams.values())
            if n == 1:
                if matches == 0:
                    return 0.0
                precision = matches / total
            elif matches == total:
                precision = 1.0
            else:
                precision = (matches + 1) / (total + 1)
            log_precision += math.log(precision)

        brevity_penalty = 1.0
        if len(candidate) < len(reference_words):
            brevity_penalty = math.exp(1 - len(reference_words) / len(candidate))
        return _clamp(brevity_penalty * math.exp(log_precision / max_n))

    @staticmethod
    def semantic_similarity(source: str, summary: str) -> float:
        """Jaccard overlap of words longer than two characters"""
        source_words = [w for w in TextProcessor.words(source) if len(w) > 2]
        summary_words = [w for w in TextProcessor.words(summary) if len(w) > 2]
        return _clamp(jaccard(source_words, summary_words))

    @staticmethod
    def coherence(summary: str) -> float:
        """Mean content-word overlap of adjacent sentences"""
        sentences = TextProcessor.segment_sentences(summary)
        if len(sentences) <= 1:
            return 1.0
        tokens = [TextProcessor.tokenize(s) for s in sentences]
        scores = [jaccard(tokens[i], tokens[i + 1]) for i in range(len(tokens) - 1)]
        return _clamp(sum(scores) / len(scores))

    @staticmethod
    def _entities(text: str) -> set:
        return {m for m in _ENTITY_RE.findall(text) if m not in ENTITY_STOP_WORDS}

    @classmethod
    def entity_preservation(cls, source: str, summary: str) -> float:
        source_entities = cls._entities(source)
        if not source_entities:
            return 1.0
        return _clamp(len(source_entities & cls._entities(summary)) / len(source_entities))

    @staticmethod
    def factual_consistency(source: str, summary: str) -> float:
        """
        Share of the summary's leading sentences that overlap some source
        sentence by more than FACT_MATCH_THRESHOLD (token Jaccard)
        """
        facts = TextProcessor.segment_sentences(summary)[:FACT_SENTENCES]
        if not facts:
            return 1.0
        source_tokens = [TextProcessor.tokenize(s) for s in TextProcessor.segment_sentences(source)]
        supported = 0
        for fact in facts:
            fact_tokens = TextProcessor.tokenize(fact)
            if any(jaccard(fact_tokens, s) > FACT_MATCH_THRESHOLD for s in source_tokens):
                supported += 1
        return supported / len(facts)

    @staticmethod
    def compression_ratio(source: str, summary: str) -> float:
        if not source:
            return 0.0
        return _clamp(len(summary) / len(source))

    @staticmethod
    def overall_score(result: Dict[str, float]) -> float:
        compression = max(0.0, 1 - abs(result["compression_ratio"] - TARGET_COMPRESSION) * 2)
        score = sum(
            weight * (compression if name == "compression" else result[name])
            for name, weight in OVERALL_WEIGHTS.items()
        )
        return _clamp(score)

    def evaluate_summary(self, source: str, summary: str, reference: Optional[str] = None) -> EvaluationResult:
        """
        Evaluate a summary

        Args:
            source: original text
            summary: generated summary
            reference: human reference summary; reference-based metrics are
                0 without one

        Returns:
            EvaluationResult with every score in [0, 1]
        """
        scores = {
            "rouge1": 0.0,
            "rouge2": 0.0,
            "rouge_l": 0.0,
            "bleu": 0.0,
        }
        if reference:
            scores.update(
                rouge1=self.rouge_n(summary, reference, 1),
                rouge2=self.rouge_n(summary, reference, 2),
                rouge_l=self.rouge_l(summary, reference),
                bleu=self.bleu(summary, reference),
            )
        scores.update(
            semantic_similarity=self.semantic_similarity(source, summary),
            coherence=self.coherence(summary),
            compression_ratio=self.compression_ratio(source, summary),
            entity_preservation=self.entity_preservation(source, summary),
            factual_consistency=self.factual_consistency(source, summary),
        )
        scores["overall_score"] = self.overall_score(scores)
        logger.debug("Summary evaluated", overall_score=round(scores["overall_score"], 3),
                     has_reference=bool(reference))
        return EvaluationResult(**scores)

    def evaluate_against_references(
        self,
        source: str,
        summary: str,
        references: List[str],
    ) -> EvaluationResult:
        """Evaluate against several references and keep the best overall score"""
        if not references:
            return self.evaluate_summary(source, summary)
        results = [self.evaluate_summary(source, summary, reference) for reference in references]
        return max(results, key=lambda r: r.overall_score)

    def build_summary_metrics(
        self,
        source: str,
        summary: str,
        reference: Optional[str] = None,
        evaluation: Optional[EvaluationResult] = None,
    ) -> SummaryMetrics:
        """Metrics block attached to a SummaryResult"""
        evaluation = evaluation or self.evaluate_summary(source, summary, reference)
        sentences = TextProcessor.segment_sentences(summary)
        return SummaryMetrics(
            compression_ratio=evaluation.compression_ratio,
            word_count=len(summary.split()),
            sentence_count=len(sentences) if sentences else (1 if summary.strip() else 0),
            readability=TextProcessor.readability(sentences or [summary]) / 100.0,
            coherence=evaluation.coherence,
            rouge1=evaluation.rouge1,
            rouge2=evaluation.rouge2,
            rouge_l=evaluation.rouge_l,
            bleu=evaluation.bleu,
            semantic_similarity=evaluation.semantic_similarity,
        )

    @staticmethod
    def confidence(metrics: SummaryMetrics) -> float:
        """Blend of coherence, readability, compression and coverage"""
        coherence = metrics.coherence or 0.5
        readability = min(metrics.readability * 2, 1.0)
        compression = max(0.0, 1 - abs(metrics.compression_ratio - 0.4) / 0.6)
        coverage = metrics.rouge1 or 0.5
        return _clamp(0.3 * coherence + 0.2 * readability + 0.3 * compression + 0.2 * coverage)
