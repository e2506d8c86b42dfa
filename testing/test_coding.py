"""Tests for code extraction: per-code validation, excerpts and batch failure handling."""

import pytest

from testing.utils import FakeChat, ProviderHTTPError, make_source_records, rate_limit_error
from workflows.theme_extraction.errors import MalformedResponseError, RateLimitError
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.normalizer import normalize_sources
from workflows.theme_extraction.purpose import get_purpose_config
from workflows.theme_extraction.stages import run_code_extraction
from workflows.theme_extraction.stages.coding import (
    MAX_CODES_PER_SOURCE,
    find_excerpt,
    validate_codes,
)
from workflows.theme_extraction.types import ExtractionStage, SourceContent, SourceType

BODY = (
    "Remote workers report more autonomy over their schedules. "
    "However, many describe isolation from colleagues as a daily cost. "
    "Managers struggle to recognise effort they cannot see."
)


@pytest.fixture
def source() -> SourceContent:
    return SourceContent(id="s1", type=SourceType.PAPER, title="Remote Work", body=BODY)


@pytest.fixture
def purpose():
    return get_purpose_config("qualitative_analysis")


class TestValidateCodes:
    """Each code is checked on its own; bad entries are skipped, not fatal."""

    def test_valid_codes_get_sequential_ids(self, source):
        raw = [
            {"source_id": "s1", "label": "Schedule autonomy", "description": "Control over hours"},
            {"source_id": "s1", "label": "Isolation cost"},
        ]
        codes = validate_codes(raw, {"s1": source})
        assert [c.id for c in codes] == ["s1-c1", "s1-c2"]
        assert codes[0].description == "Control over hours"
        assert codes[1].description == ""

    def test_invalid_entries_skipped(self, source):
        raw = [
            "not an object",
            {"source_id": "s1", "label": ""},
            {"source_id": "s1", "label": "   "},
            {"source_id": "unknown", "label": "Orphan code"},
            {"source_id": "s1"},
            {"source_id": "s1", "label": "Invisible effort"},
        ]
        codes = validate_codes(raw, {"s1": source})
        assert [c.label for c in codes] == ["Invisible effort"]

    def test_per_source_cap(self, source):
        raw = [{"source_id": "s1", "label": f"Code {i}"} for i in range(MAX_CODES_PER_SOURCE + 5)]
        assert len(validate_codes(raw, {"s1": source})) == MAX_CODES_PER_SOURCE

    def test_non_list_raises(self, source):
        with pytest.raises(MalformedResponseError):
            validate_codes({"codes": "nope"}, {"s1": source})

    def test_whitespace_in_labels_collapsed(self, source):
        codes = validate_codes([{"source_id": "s1", "label": "  Isolation \n cost "}], {"s1": source})
        assert codes[0].label == "Isolation cost"


class TestFindExcerpt:
    """Tests for excerpt selection."""

    def test_verbatim_quote_used(self, source):
        assert find_excerpt(source, "isolation", '"isolation from colleagues"') == "isolation from colleagues"

    def test_invented_quote_replaced_by_best_sentence(self, source):
        excerpt = find_excerpt(source, "Managers recognise effort", "a quote that is not in the text")
        assert excerpt == "Managers struggle to recognise effort they cannot see."

    def test_no_overlap_falls_back_to_opening(self, source):
        excerpt = find_excerpt(source, "zzz qqq")
        assert BODY.startswith(excerpt[:40])


class TestRunCodeExtraction:
    """Tests for run_code_extraction()."""

    async def test_codes_extracted_and_embedded(self, gateway, models, reporter, config, purpose, chat):
        sources, _ = normalize_sources(make_source_records(10))

        result = await run_code_extraction(sources, gateway, models, reporter, config, purpose)

        assert len(result.codes) == 10 * chat.codes_per_source
        assert result.failed == []
        assert chat.coding_calls == 3  # batches of 4
        assert all(code.embedding for code in result.codes)
        assert {code.source_id for code in result.codes} == {s.id for s in sources}
        for code in result.codes:
            assert code.excerpts and code.excerpts[0] in " ".join(
                next(s.body for s in sources if s.id == code.source_id).split()
            )

    async def test_code_order_is_deterministic(self, gateway, models, reporter, config, purpose):
        sources, _ = normalize_sources(make_source_records(9))

        first = await run_code_extraction(sources, gateway, models, reporter, config, purpose)
        second = await run_code_extraction(sources, gateway, models, reporter, config, purpose)

        assert [c.id for c in first.codes] == [c.id for c in second.codes]

    async def test_rate_limit_is_fatal(self, gateway, embedder, reporter, config, purpose, sleep):
        chat = FakeChat(coding_error=lambda: rate_limit_error(45))
        models = ThemeModels(embedder=embedder, coding_chat=chat, chat_provider="anthropic")
        sources, _ = normalize_sources(make_source_records(4))

        with pytest.raises(RateLimitError) as excinfo:
            await run_code_extraction(sources, gateway, models, reporter, config, purpose)

        assert excinfo.value.retry_after_seconds > 0
        assert excinfo.value.provider == "anthropic"
        assert chat.coding_calls == config.max_retries

    async def test_failed_batch_is_skipped(self, gateway, embedder, reporter, config, purpose, broadcaster):
        calls = 0

        class FirstBatchFails(FakeChat):
            async def ainvoke(self, messages, **kwargs):
                nonlocal calls
                calls += 1
                if calls == 1:
                    raise ProviderHTTPError(400, "prompt too long")
                return await super().ainvoke(messages, **kwargs)

        chat = FirstBatchFails()
        models = ThemeModels(embedder=embedder, coding_chat=chat, chat_provider="fake-chat")
        sources, _ = normalize_sources(make_source_records(8))

        result = await run_code_extraction(sources, gateway, models, reporter, config, purpose)

        assert len(result.failed) == 1
        assert result.failed[0].stage == ExtractionStage.CODING
        assert result.failed[0].error_type == "ProviderHTTPError"
        assert len(result.codes) == 4 * chat.codes_per_source
        assert any(e.status == "item_failed" for e in broadcaster.history("req-test"))

    async def test_malformed_response_is_contained(self, gateway, embedder, reporter, config, purpose):
        class Garbled(FakeChat):
            async def ainvoke(self, messages, **kwargs):
                return "I could not produce JSON this time."

        models = ThemeModels(embedder=embedder, coding_chat=Garbled(), chat_provider="fake-chat")
        sources, _ = normalize_sources(make_source_records(4))

        result = await run_code_extraction(sources, gateway, models, reporter, config, purpose)

        assert result.codes == []
        assert result.failed[0].error_type == "MalformedResponseError"
