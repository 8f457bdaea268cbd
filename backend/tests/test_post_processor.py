"""
Post-processor tests
"""
import pytest

from summarizer.schemas.summarization import OutputFormat, SummarizationConfig
from summarizer.services.post_processor import PostProcessor


@pytest.fixture
def processor():
    return PostProcessor()


def test_remove_exact_duplicates(processor):
    text = "The cat sat on the mat. The cat sat on the mat. Dogs bark loudly at night."
    assert processor.remove_redundancy(text) == "The cat sat on the mat. Dogs bark loudly at night."


def test_remove_near_duplicates(processor):
    text = "The report was published on Monday. The report was published on Monday! Sales rose sharply."
    result = processor.remove_redundancy(text)
    assert result.count("published") == 1
    assert "Sales rose sharply." in result


def test_enforce_length_cuts_at_sentence_boundary(processor):
    text = "One two three four five. Six seven eight nine ten. Eleven twelve thirteen fourteen fifteen."
    assert processor.enforce_length(text, 12) == "One two three four five. Six seven eight nine ten."


def test_enforce_length_clips_single_long_sentence(processor):
    text = "one two three four five six seven eight nine ten"
    assert processor.enforce_length(text, 5) == "one two three four five..."


def test_enforce_length_without_limit(processor):
    assert processor.enforce_length("Keep everything here.", None) == "Keep everything here."


def test_polish(processor):
    assert processor.polish("  hello world .  this is fine") == "Hello world. This is fine."
    assert processor.polish("a,b") == "A, b."
    assert processor.polish("") == ""


def test_process_renders_bullets(processor):
    config = SummarizationConfig(output_format=OutputFormat.BULLETS)
    result = processor.process("First point is here. Second point is here.", config)
    assert result.splitlines() == ["- First point is here.", "- Second point is here."]


def test_process_never_pads_short_summaries(processor):
    config = SummarizationConfig(max_length=100, min_length=50)
    result = processor.process("Too short a summary.", config)
    assert result == "Too short a summary."
