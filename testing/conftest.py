"""
Pytest configuration for theme extraction tests.

Everything runs offline: model clients are replaced by the fakes in
testing.utils, and the gateway's sleep is recorded instead of awaited.
"""

from collections.abc import Generator

import pytest

from core.logging import end_run, start_run
from testing.utils import FakeChat, FakeEmbedder, RecordingSleep
from workflows.theme_extraction.config import ThemeExtractionConfig
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.progress import ProgressBroadcaster, ProgressReporter


@pytest.fixture(autouse=True)
def logging_run(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Rotate logs at test module boundaries.

    When running with pytest-xdist, each worker uses a separate log directory
    to prevent file corruption from concurrent writes.
    """
    import os

    worker_id = os.environ.get("PYTEST_XDIST_WORKER")
    if worker_id:
        os.environ["THALA_LOG_DIR"] = f"logs/test-{worker_id}"

    test_path = request.node.nodeid.split("::")[0]
    test_name = test_path.replace("/", "-").replace(".py", "")
    start_run(f"test-{test_name}")
    yield
    end_run()


@pytest.fixture
def config() -> ThemeExtractionConfig:
    """Explicit settings so tests don't depend on the environment."""
    return ThemeExtractionConfig(
        max_concurrent=4,
        call_timeout=5.0,
        max_retries=3,
        backoff_base=5.0,
        max_backoff=3600.0,
        default_retry_after=300.0,
        coding_batch_size=4,
        embedding_batch_size=50,
        ai_labeling=True,
        labeling_rate_limit_fallback=True,
        random_seed=42,
        full_text_word_threshold=1000,
        max_sources=500,
        max_source_chars=2_000_000,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def gateway(config, sleep) -> InferenceGateway:
    return InferenceGateway(config, sleep=sleep)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture
def models(embedder, chat) -> ThemeModels:
    return ThemeModels(embedder=embedder, coding_chat=chat, chat_provider="fake-chat")


@pytest.fixture
def broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster()


@pytest.fixture
def reporter(broadcaster) -> ProgressReporter:
    broadcaster.open("req-test")
    return ProgressReporter(broadcaster, "req-test", user_id="user-1")
