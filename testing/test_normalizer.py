"""
Tests for mapping raw source records onto SourceContent.
"""

import pytest

from workflows.theme_extraction.errors import InputValidationError
from workflows.theme_extraction.normalizer import normalize_source, normalize_sources
from workflows.theme_extraction.types import SourceContent, SourceType

ABSTRACT = (
    "This paper studies how peer feedback changes revision behaviour in "
    "undergraduate writing courses across three universities."
)


class TestPapers:
    """Tests for paper records."""

    def test_full_text_preferred_when_available(self):
        source = normalize_source(
            {
                "id": "p1",
                "type": "paper",
                "title": "Peer Feedback",
                "abstract": ABSTRACT,
                "full_text": ABSTRACT * 20,
                "has_full_text": True,
            }
        )
        assert source.body == (ABSTRACT * 20).strip()
        assert source.metadata["content_type"] == "full_text"

    def test_abstract_when_no_full_text(self):
        source = normalize_source({"id": "p2", "type": "paper", "abstract": ABSTRACT})
        assert source.body == ABSTRACT
        assert source.metadata["content_type"] == "abstract"
        assert source.type == SourceType.PAPER

    def test_full_text_flag_false_ignores_full_text(self):
        source = normalize_source(
            {"id": "p3", "abstract": ABSTRACT, "full_text": ABSTRACT * 5, "has_full_text": False}
        )
        assert source.body == ABSTRACT

    def test_long_abstract_marked_as_overflow(self):
        long_abstract = " ".join(["word"] * 300)
        source = normalize_source({"id": "p4", "type": "paper", "abstract": long_abstract})
        assert source.metadata["content_type"] == "abstract_overflow"

    def test_metadata_carried(self):
        source = normalize_source(
            {
                "id": "p5",
                "type": "article",
                "abstract": ABSTRACT,
                "keywords": ["feedback", "writing"],
                "doi": "10.1000/xyz",
            }
        )
        assert source.type == SourceType.PAPER
        assert source.metadata["keywords"] == ["feedback", "writing"]
        assert source.metadata["url"] == "10.1000/xyz"
        assert source.metadata["word_count"] == len(ABSTRACT.split())


class TestOtherSourceTypes:
    """Tests for videos, podcasts and social posts."""

    def test_video_transcript(self):
        source = normalize_source({"id": "v1", "type": "youtube", "transcript": ABSTRACT})
        assert source.type == SourceType.VIDEO
        assert source.metadata["content_type"] == "transcript"

    def test_podcast_falls_back_to_description(self):
        source = normalize_source({"id": "pod1", "type": "podcast", "description": ABSTRACT})
        assert source.type == SourceType.PODCAST
        assert source.body == ABSTRACT

    def test_social_aliases(self):
        for alias in ("social", "tiktok", "instagram", "twitter"):
            source = normalize_source({"id": f"s-{alias}", "type": alias, "text": ABSTRACT})
            assert source.type == SourceType.SOCIAL
            assert source.metadata["content_type"] == "post"

    def test_type_is_case_insensitive(self):
        assert normalize_source({"id": "v2", "type": "VIDEO", "transcript": ABSTRACT}).type == SourceType.VIDEO


class TestRejection:
    """Tests for records that can't be used."""

    def test_short_content_returns_none(self):
        assert normalize_source({"id": "x", "type": "paper", "abstract": "Too short."}) is None

    def test_missing_id_raises(self):
        with pytest.raises(InputValidationError):
            normalize_source({"type": "paper", "abstract": ABSTRACT})

    def test_unknown_type_raises(self):
        with pytest.raises(InputValidationError):
            normalize_source({"id": "x", "type": "newsletter", "abstract": ABSTRACT})


class TestNormalizeSources:
    """Tests for batch normalization."""

    def test_skips_and_reports_empty_records(self):
        records = [
            {"id": "a", "abstract": ABSTRACT},
            {"id": "b", "abstract": ""},
            {"id": "c", "type": "video", "transcript": ABSTRACT},
        ]
        sources, skipped = normalize_sources(records)
        assert [s.id for s in sources] == ["a", "c"]
        assert skipped == ["b"]

    def test_source_content_passes_through(self):
        existing = SourceContent(id="sc", type=SourceType.PAPER, body=ABSTRACT)
        sources, skipped = normalize_sources([existing])
        assert sources == [existing]
        assert skipped == []
