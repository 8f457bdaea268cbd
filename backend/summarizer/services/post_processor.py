"""
Post-processing service
Length enforcement, redundancy removal and surface polish for generated
summaries.
"""
import re
from difflib import SequenceMatcher
from typing import List, Optional

import structlog

from summarizer.schemas.summarization import OutputFormat, SummarizationConfig
from summarizer.services.text_processor import TextProcessor

logger = structlog.get_logger()


class PostProcessor:
    """Summary post-processor"""

    NEAR_DUPLICATE_THRESHOLD = 0.85

    @staticmethod
    def _split(text: str) -> List[str]:
        sentences = TextProcessor.segment_sentences(text)
        if not sentences and text.strip():
            return [text.strip()]
        return sentences

    def remove_redundancy(self, text: str) -> str:
        """
        Drop exact and near-duplicate sentences, keeping the first occurrence

        Args:
            text: summary text

        Returns:
            text without repeated sentences
        """
        kept: List[str] = []
        seen = set()
        for sentence in self._split(text):
            key = " ".join(TextProcessor.words(sentence))
            if key in seen:
                continue
            if any(
                SequenceMatcher(None, key, " ".join(TextProcessor.words(previous))).ratio() > self.NEAR_DUPLICATE_THRESHOLD
                for previous in kept
            ):
                continue
            seen.add(key)
            kept.append(sentence)
        removed = len(self._split(text)) - len(kept)
        if removed:
            logger.debug("Removed redundant sentences", count=removed)
        return " ".join(kept)

    def enforce_length(self, text: str, max_length: Optional[int]) -> str:
        """Cut to at most max_length words at a sentence boundary"""
        if not max_length or len(text.split()) <= max_length:
            return text
        kept: List[str] = []
        words = 0
        for sentence in self._split(text):
            sentence_words = len(sentence.split())
            if words + sentence_words > max_length:
                break
            kept.append(sentence)
            words += sentence_words
        if not kept:
            # The first sentence alone is too long
            clipped = " ".join(text.split()[:max_length]).rstrip(",;:")
            return clipped if clipped.endswith((".", "!", "?")) else clipped + "..."
        return " ".join(kept)

    @staticmethod
    def polish(text: str) -> str:
        """Whitespace, punctuation spacing, capitalisation and a terminal period"""
        text = " ".join(text.split())
        if not text:
            return text
        text = re.sub(r"\s+([,.;:!?])", r"\1", text)
        text = re.sub(r"([,;:!?])(?=[A-Za-z])", r"\1 ", text)
        text = re.sub(r"([.!?])\s+([a-z])", lambda m: f"{m.group(1)} {m.group(2).upper()}", text)
        text = text[0].upper() + text[1:]
        if text[-1] not in ".!?\"'”":
            text += "."
        return text

    def to_bullets(self, text: str) -> str:
        return "\n".join(f"- {sentence}" for sentence in self._split(text))

    def process(self, summary: str, config: SummarizationConfig) -> str:
        """
        Apply every post-processing step for a config

        Args:
            summary: raw engine output
            config: request config

        Returns:
            final summary text
        """
        text = self.remove_redundancy(summary)
        text = self.enforce_length(text, config.max_length)
        text = self.polish(text)

        if config.min_length and len(text.split()) < config.min_length:
            logger.warning("Summary shorter than requested minimum",
                           words=len(text.split()), min_length=config.min_length)

        if config.output_format == OutputFormat.BULLETS:
            text = self.to_bullets(text)
        return text
