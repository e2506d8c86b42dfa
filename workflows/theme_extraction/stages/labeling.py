"""Stage 5: theme labeling.

Each reviewed cluster is named by the chat model when AI labeling is on,
falling back to a term-frequency labeler for that cluster when the model's
answer is unusable. Whether a rate limit also falls back, or fails the
request, is set by ``labeling_rate_limit_fallback``.
"""

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from langchain_core.messages import HumanMessage, SystemMessage

from workflows.shared.async_utils import gather_cancel_on_error
from workflows.shared.llm_utils import extract_json_from_response, extract_response_content
from workflows.theme_extraction.config import ThemeExtractionConfig
from workflows.theme_extraction.errors import (
    ExtractionCancelledError,
    MalformedResponseError,
    RateLimitError,
)
from workflows.theme_extraction.gateway import InferenceGateway
from workflows.theme_extraction.models import ThemeModels
from workflows.theme_extraction.progress import ProgressReporter
from workflows.theme_extraction.prompts import (
    LABELING_MAX_CODES,
    LABELING_SYSTEM_PROMPT,
    LABELING_USER_TEMPLATE,
)
from workflows.theme_extraction.purpose import ResearchPurposeConfig
from workflows.theme_extraction.types import (
    ExtractionStage,
    FailedItem,
    ThemeCluster,
    ThemeLabel,
)

logger = logging.getLogger(__name__)

STAGE = ExtractionStage.LABELING

MAX_KEYWORDS = 7
KEYWORDS_FOR_LABEL = 3
KEYWORDS_FOR_DEFINITION = 5
MAX_DESCRIPTIONS = 3
MIN_DESCRIPTION_CHARS = 10
MIN_WORD_CHARS = 3
MAX_LABEL_CHARS = 100

STOP_WORDS = frozenset(
    """
    the a an and or but nor yet so in on at to for of with by from as into over
    this that these those which what who whom when where why how its their there
    is am are was were been being be have has had having do does did doing
    will would should could may might must can also more most other such than
    """.split()
)

RESEARCH_TERMS = frozenset(
    """
    covid-19 covid19 sars-cov-2 long-covid h1n1 h5n1 hiv-1 hiv-2
    p-value t-test f-test z-test r-squared chi-square anova ancova manova
    meta-analysis meta-analytic rct n-of-1 mrna dna rna crispr cas9
    ml ai nlp llm gpt gpt-4 bert vr ar xr iot api 2d 3d 5g 6g wi-fi type-1 type-2
    """.split()
)

_TOKEN_SPLIT_RE = re.compile(r"[^\w\s-]")
_ACRONYM_RE = re.compile(r"^[A-Z]{7,}$")
_CODED_ABBREVIATION_RE = re.compile(r"^[a-z]+-\d+-[a-z]+$")


@dataclass
class LabelingResult:
    labels: dict[str, ThemeLabel]
    failed: list[FailedItem] = field(default_factory=list)


# =============================================================================
# Statistical labeling
# =============================================================================


def is_noise_word(word: str) -> bool:
    """Numbers, artefacts and fragments that make poor theme terms."""
    if not word:
        return True
    if word.lower() in RESEARCH_TERMS:
        return False
    if word.isdigit():
        return True
    if sum(ch.isdigit() for ch in word) / len(word) > 0.5:
        return True
    if _CODED_ABBREVIATION_RE.match(word.lower()) or _ACRONYM_RE.match(word):
        return True
    if word.startswith("&"):
        return True
    if len(word) == 1:
        return True
    return not any(ch.isalnum() for ch in word)


def _is_term(word: str) -> bool:
    if word in RESEARCH_TERMS:
        return True
    return len(word) > MIN_WORD_CHARS and word not in STOP_WORDS and not is_noise_word(word)


def tokenize(text: str) -> list[str]:
    return [w for w in _TOKEN_SPLIT_RE.sub(" ", text.lower()).split() if _is_term(w)]


def extract_keywords(texts: list[str]) -> list[str]:
    """Most frequent terms across texts, first occurrence breaking ties."""
    counts = Counter(word for text in texts for word in tokenize(text))
    return [word for word, _ in counts.most_common(MAX_KEYWORDS)]


def phrase_frequencies(labels: list[str]) -> Counter:
    """Unigram and bigram counts over code labels."""
    counts: Counter = Counter()
    for label in labels:
        words = _TOKEN_SPLIT_RE.sub(" ", label.lower()).split()
        counts.update(word for word in words if _is_term(word))
        counts.update(
            f"{first} {second}"
            for first, second in zip(words, words[1:])
            if first not in STOP_WORDS
            and second not in STOP_WORDS
            and not is_noise_word(first)
            and not is_noise_word(second)
        )
    return counts


def shared_label(labels: list[str]) -> str | None:
    """Label used by a strict majority of codes, in its first-seen spelling."""
    if not labels:
        return None
    normalized = [" ".join(label.split()).casefold() for label in labels]
    counts = Counter(normalized)
    top, count = counts.most_common(1)[0]
    if count * 2 <= len(labels):
        return None
    return " ".join(labels[normalized.index(top)].split())


def capitalize_label(label: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in label.split(" ") if word)


def statistical_label(cluster: ThemeCluster, index: int) -> ThemeLabel:
    """Deterministic label from the cluster's own codes."""
    labels = [code.label for code in cluster.codes if code.label]
    descriptions = [code.description for code in cluster.codes if code.description]
    code_count = len(cluster.codes)
    keywords = extract_keywords(labels + descriptions)

    method = "statistical"
    label = shared_label(labels)
    if label is None:
        phrases = phrase_frequencies(labels).most_common(1)
        if phrases:
            label = capitalize_label(phrases[0][0])
        elif keywords:
            label = capitalize_label(" ".join(keywords[:KEYWORDS_FOR_LABEL]))
        else:
            label = f"Theme {index + 1}"
            method = "placeholder"

    unique_descriptions = [
        d for d in dict.fromkeys(descriptions) if len(d) > MIN_DESCRIPTION_CHARS
    ][:MAX_DESCRIPTIONS]
    if unique_descriptions:
        description = "; ".join(unique_descriptions)
    elif keywords:
        description = (
            f"Theme encompassing {code_count} related codes focusing on "
            f"{', '.join(keywords[:KEYWORDS_FOR_LABEL])}"
        )
    else:
        description = f"Theme encompassing {code_count} related codes"

    plural = "s" if code_count != 1 else ""
    concepts = ", ".join(keywords[:KEYWORDS_FOR_DEFINITION]) or label
    definition = (
        f"A cluster of {code_count} semantically related research code{plural} "
        f"identified through statistical clustering, characterized by the concepts: {concepts}."
    )

    return ThemeLabel(
        label=label[:MAX_LABEL_CHARS],
        description=description,
        definition=definition,
        keywords=keywords,
        method=method,
    )


# =============================================================================
# AI labeling
# =============================================================================


def _format_codes(cluster: ThemeCluster) -> str:
    lines = []
    for code in cluster.codes[:LABELING_MAX_CODES]:
        line = f"- {code.label}"
        if code.description:
            line += f": {code.description}"
        if code.excerpts:
            line += f' (e.g. "{code.excerpts[0][:150]}")'
        lines.append(line)
    if len(cluster.codes) > LABELING_MAX_CODES:
        lines.append(f"- ... and {len(cluster.codes) - LABELING_MAX_CODES} more")
    return "\n".join(lines)


def parse_label_response(content: str, fallback: ThemeLabel) -> ThemeLabel:
    """Validate a labeling response, borrowing missing optional fields from ``fallback``.

    Raises:
        MalformedResponseError: not JSON, or no usable label
    """
    try:
        data = extract_json_from_response(content)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Label response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Label response is a {type(data).__name__}, not an object")

    label = data.get("label")
    if not isinstance(label, str) or not label.strip():
        raise MalformedResponseError("Label response has no label")

    description = data.get("description")
    definition = data.get("definition")
    keywords = data.get("keywords")
    if isinstance(keywords, list):
        keywords = [k.strip() for k in keywords if isinstance(k, str) and k.strip()][:MAX_KEYWORDS]
    if not keywords:
        keywords = fallback.keywords

    return ThemeLabel(
        label=" ".join(label.split())[:MAX_LABEL_CHARS],
        description=description.strip() if isinstance(description, str) and description.strip() else fallback.description,
        definition=definition.strip() if isinstance(definition, str) and definition.strip() else fallback.definition,
        keywords=keywords,
        method="ai",
    )


async def ai_label(
    cluster: ThemeCluster,
    fallback: ThemeLabel,
    gateway: InferenceGateway,
    models: ThemeModels,
    purpose: ResearchPurposeConfig,
) -> ThemeLabel:
    messages = [
        SystemMessage(
            content=LABELING_SYSTEM_PROMPT.format(
                purpose_description=purpose.description or purpose.purpose,
                rigor=purpose.rigor,
            )
        ),
        HumanMessage(
            content=LABELING_USER_TEMPLATE.format(
                code_count=len(cluster.codes),
                source_count=len(cluster.source_ids),
                codes=_format_codes(cluster),
            )
        ),
    ]
    response = await gateway.execute(
        lambda: models.labeling_chat.ainvoke(messages),
        context=f"labeling {cluster.cluster_id}",
        provider=models.chat_provider,
    )
    return parse_label_response(extract_response_content(response), fallback)


async def run_labeling(
    clusters: list[ThemeCluster],
    gateway: InferenceGateway,
    models: ThemeModels,
    reporter: ProgressReporter,
    config: ThemeExtractionConfig,
    purpose: ResearchPurposeConfig,
) -> LabelingResult:
    """Label every non-empty cluster.

    Raises:
        RateLimitError: labeling was rate limited and fallback is disabled
        ExtractionCancelledError: cancellation was requested during the stage
    """
    clusters = [cluster for cluster in clusters if cluster.codes]
    total = len(clusters)
    labels: dict[str, ThemeLabel] = {}
    failed: list[FailedItem] = []
    done = 0

    mode = "AI" if config.ai_labeling else "statistical"
    reporter.emit(
        STAGE,
        0.0,
        f"Labeling {total} themes ({mode})",
        reporter.last_stats.model_copy(update={"current_operation": "Labeling themes"}),
    )

    async def label_one(index: int, cluster: ThemeCluster) -> None:
        nonlocal done
        fallback = statistical_label(cluster, index)
        label = fallback
        if config.ai_labeling:
            try:
                label = await ai_label(cluster, fallback, gateway, models, purpose)
            except ExtractionCancelledError:
                raise
            except RateLimitError as e:
                if not config.labeling_rate_limit_fallback:
                    raise
                logger.warning(f"Rate limited labeling {cluster.cluster_id}; using statistical label")
                failed.append(_failed(cluster, e))
            except Exception as e:
                logger.warning(
                    f"AI labeling failed for {cluster.cluster_id} ({type(e).__name__}: {e}); "
                    "using statistical label"
                )
                failed.append(_failed(cluster, e))

        labels[cluster.cluster_id] = label
        done += 1
        reporter.emit(
            STAGE,
            done / total,
            f"Theme {done}/{total}: {label.label}",
            item_id=cluster.cluster_id,
        )

    await gather_cancel_on_error(label_one(i, cluster) for i, cluster in enumerate(clusters))

    ai_count = sum(1 for label in labels.values() if label.method == "ai")
    logger.info(f"Labeled {len(labels)} themes ({ai_count} by model, {len(labels) - ai_count} statistical)")
    return LabelingResult(labels=labels, failed=failed)


def _failed(cluster: ThemeCluster, error: Exception) -> FailedItem:
    return FailedItem(
        item_id=cluster.cluster_id,
        stage=STAGE,
        error=str(error),
        error_type=type(error).__name__,
    )
