"""
Text processor tests
"""
import numpy as np

from summarizer.services.text_processor import TextProcessor, cosine, jaccard


def test_segment_handles_abbreviations_and_decimals():
    """Abbreviations, decimals and lowercase continuations do not end a sentence"""
    text = "Dr. Smith arrived at 3.5 p.m. today. He left early."
    assert TextProcessor.segment_sentences(text) == [
        "Dr. Smith arrived at 3.5 p.m. today.",
        "He left early.",
    ]


def test_segment_drops_short_fragments():
    assert TextProcessor.segment_sentences("Yes. This sentence is long enough.") == [
        "This sentence is long enough.",
    ]


def test_segment_keeps_quotations_together():
    text = 'She said "Stop. Now." and left the room quickly.'
    assert TextProcessor.segment_sentences(text) == [text]


def test_segment_splits_paragraphs():
    text = "The first paragraph ends here\n\nThe second paragraph starts here."
    assert len(TextProcessor.segment_sentences(text)) == 2


def test_segment_empty_text():
    assert TextProcessor.segment_sentences("") == []
    assert TextProcessor.segment_sentences("   \n ") == []


def test_tokenize_removes_stop_words():
    assert TextProcessor.tokenize("The quick brown fox is a fox") == ["quick", "brown", "fox", "fox"]


def test_normalize_collapses_whitespace():
    assert TextProcessor.normalize("  a\r\nb \t c  ") == "a b c"


def test_extract_entities(sample_text):
    entities = TextProcessor.extract_entities(sample_text)
    by_type = {}
    for entity in entities:
        by_type.setdefault(entity.type, []).append(entity.text)

    assert "$12 billion" in by_type["MONEY"]
    assert "40%" in by_type["PERCENT"]
    assert "March 3, 2024" in by_type["DATE"]
    # spans never overlap
    spans = sorted((e.start, e.end) for e in entities)
    assert all(a_end <= b_start for (_, a_end), (b_start, _) in zip(spans, spans[1:]))


def test_tfidf_rows_are_normalised():
    tokens = [("cat", "sat"), ("dog", "sat"), ()]
    matrix = TextProcessor.tfidf_embeddings(tokens)
    assert matrix.shape == (3, 3)
    norms = np.linalg.norm(matrix, axis=1)
    assert np.allclose(norms[:2], 1.0)
    assert norms[2] == 0.0


def test_tfidf_without_vocabulary():
    assert TextProcessor.tfidf_embeddings([(), ()]).shape == (2, 0)


def test_readability_range(sample_text):
    score = TextProcessor.readability(TextProcessor.segment_sentences(sample_text))
    assert 0.0 <= score <= 100.0
    assert TextProcessor.readability([]) == 0.0


def test_process_builds_document(sample_text):
    document = TextProcessor.process(sample_text)
    assert len(document.sentences) == 10
    assert len(document.tokens) == 10
    assert document.embeddings.shape[0] == 10
    assert not document.embeddings.flags.writeable
    assert document.avg_sentence_length > 0
    assert document.keywords


def test_similarity_helpers():
    assert jaccard(["a", "b"], ["b", "c"]) == 1 / 3
    assert jaccard([], []) == 0.0
    assert cosine(np.array([1.0, 0.0]), np.array([1.0, 0.0])) == 1.0
    assert cosine(np.zeros(2), np.array([1.0, 0.0])) == 0.0
