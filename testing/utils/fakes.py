"""Offline stand-ins for the embedding service and chat models.

Both fakes are deterministic: the same text always embeds to the same
vector, and the chat fake derives its answers from the prompt it is given.
"""

import asyncio
import hashlib
import json
import re
from typing import Any, Callable, Optional

import numpy as np
from langchain_core.messages import AIMessage

_SOURCE_BLOCK_RE = re.compile(
    r'<source id="(?P<id>[^"]+)" type="[^"]+">\s*Title: (?P<title>[^\n]*)\n\n(?P<body>.*?)</source>',
    re.DOTALL,
)


def fake_vector(text: str, dim: int = 256) -> list[float]:
    """Gaussian vector seeded by the text's hash. Distinct texts are near-orthogonal."""
    seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:8], "big")
    return np.random.default_rng(seed).standard_normal(dim).tolist()


class ProviderHTTPError(Exception):
    """Looks like an SDK error: carries ``status_code`` and a message."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


def rate_limit_error(seconds: float = 45) -> ProviderHTTPError:
    return ProviderHTTPError(
        429,
        f"Rate limit reached for tokens. Limit 100000, Used 99996, Requested 484. "
        f"Please try again in {seconds}s.",
    )


class RecordingSleep:
    """Replaces asyncio.sleep in the gateway; records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeEmbedder:
    provider_name = "fake-embeddings"

    def __init__(
        self,
        dim: int = 256,
        max_input_chars: int = 32000,
        fail_marker: Optional[str] = None,
        on_call: Optional[Callable[[int], None]] = None,
    ):
        self.dim = dim
        self.max_input_chars = max_input_chars
        self.fail_marker = fail_marker
        self.on_call = on_call
        self.calls: list[list[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.fail_marker and any(self.fail_marker in text for text in texts):
                raise ValueError("embedding input rejected")
            return [fake_vector(text, self.dim) for text in texts]
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        pass


class FakeChat:
    """Answers code extraction and labeling prompts.

    Code extraction: ``codes_per_source`` codes for every ``<source>`` block in
    the prompt, each quoting the source's first sentence. Labeling: a label
    built from the first code line in the prompt.

    ``coding_error`` / ``labeling_error`` are exception factories raised instead
    of answering.
    """

    def __init__(
        self,
        codes_per_source: int = 6,
        coding_error: Optional[Callable[[], Exception]] = None,
        labeling_error: Optional[Callable[[], Exception]] = None,
        labeling_content: Optional[str] = None,
    ):
        self.codes_per_source = codes_per_source
        self.coding_error = coding_error
        self.labeling_error = labeling_error
        self.labeling_content = labeling_content
        self.coding_calls = 0
        self.labeling_calls = 0

    async def ainvoke(self, messages: Any, **kwargs: Any) -> AIMessage:
        await asyncio.sleep(0)
        prompt = messages[-1].content
        if "<source id=" in prompt:
            self.coding_calls += 1
            if self.coding_error is not None:
                raise self.coding_error()
            return AIMessage(content=self._codes(prompt))
        self.labeling_calls += 1
        if self.labeling_error is not None:
            raise self.labeling_error()
        return AIMessage(content=self.labeling_content or self._label(prompt))

    def _codes(self, prompt: str) -> str:
        codes = []
        for match in _SOURCE_BLOCK_RE.finditer(prompt):
            source_id = match.group("id")
            first_sentence = match.group("body").strip().split(". ")[0]
            for n in range(1, self.codes_per_source + 1):
                codes.append(
                    {
                        "source_id": source_id,
                        "label": f"{source_id} concept {n}",
                        "description": f"Concept {n} discussed in {match.group('title')}",
                        "excerpt": first_sentence,
                    }
                )
        return "```json\n" + json.dumps({"codes": codes}) + "\n```"

    def _label(self, prompt: str) -> str:
        first = next(
            (line[2:].split(":")[0] for line in prompt.splitlines() if line.startswith("- ")),
            "unnamed",
        )
        return json.dumps(
            {
                "label": f"Theme around {first}",
                "description": f"Codes related to {first}.",
                "definition": f"A theme grouping codes that resemble {first}.",
                "keywords": first.split()[:3],
            }
        )


BODY_TEMPLATE = (
    "Study {i} examines how {topic} shapes everyday practice among participants. "
    "Interviews with {n} respondents describe tensions between autonomy and support. "
    "Findings suggest that {topic} interacts with institutional context in varied ways. "
    "The authors recommend further longitudinal work on {topic} across settings."
)

TOPICS = [
    "peer feedback", "remote work", "digital literacy", "community health",
    "climate anxiety", "teacher burnout", "gig economy", "online learning",
    "urban gardening", "sleep hygiene", "financial stress", "civic trust",
    "open science", "language revival", "caregiver fatigue", "museum access",
]


def make_source_records(count: int = 16) -> list[dict[str, Any]]:
    """Mixed paper/video/podcast/social records with enough text to analyse."""
    records = []
    for i in range(count):
        topic = TOPICS[i % len(TOPICS)]
        body = BODY_TEMPLATE.format(i=i, topic=topic, n=10 + i)
        kind = ("paper", "video", "podcast", "social")[i % 4]
        record: dict[str, Any] = {"id": f"src-{i:02d}", "type": kind, "title": f"{topic.title()} study {i}"}
        if kind == "paper":
            record["abstract"] = body
        elif kind == "social":
            record["text"] = body
        else:
            record["transcript"] = body
        records.append(record)
    return records
