"""AI sentiment for issues and pull requests.

Sentiment is optional and lazy. It is computed only for items someone has
viewed, cached per item against a hash of the analyzed text, and never
allowed to fail a read. The scoring engine reads the cache through
``CachedSentiment``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol, Union

import anthropic
from openai import AsyncOpenAI

from vitals.config import settings
from vitals.db import queries
from vitals.models.db_models import IssueRow, ItemKind, PullRequestRow, Repository, SentimentRecord
from vitals.models.settings import AIProviderConfig, RepoSettings
from vitals.services.repo_settings import resolve_ai_config
from vitals.utils.dates import days_since, to_iso, utcnow
from vitals.utils.text_analysis import content_hash

logger = logging.getLogger(__name__)

Item = Union[IssueRow, PullRequestRow]

MAX_TOKENS = 150
NEGATIVE_CUTOFF = -0.3
ISSUE_WEIGHT = 0.3
COMMENTS_WEIGHT = 0.7

SENTIMENT_PROMPT = """Analyze the sentiment and urgency of this GitHub issue or comment.

SENTIMENT CATEGORIES:
- NEGATIVE: Frustration, urgency, pain points, complaints, blocking issues
- NEUTRAL: Constructive technical discussion, questions, clarifications
- POSITIVE: Appreciation, encouragement, solved problems

Respond with a single JSON object and nothing else, in this exact format:
{{"score": -0.8, "label": "negative", "reasoning": "User is blocked by the bug"}}

- score: a number between -1.0 and 1.0
- label: exactly "negative", "neutral" or "positive"
- reasoning: one or two sentences

TEXT TO ANALYZE:
{text}"""


class SentimentError(Exception):
    pass


class SentimentProvider(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


class AnthropicProvider:
    default_model = "claude-3-5-haiku-latest"

    def __init__(self, api_key: str, model: str | None = None, client=None) -> None:
        self.model = model or self.default_model
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def complete(self, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text


class OpenAIProvider:
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str, model: str | None = None, client=None) -> None:
        self.model = model or self.default_model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def complete(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content or ""


def build_provider(config: AIProviderConfig) -> SentimentProvider:
    if config.provider == "openai":
        return OpenAIProvider(config.api_key, config.model)
    return AnthropicProvider(config.api_key, config.model)


@dataclass
class Sentiment:
    score: float
    label: str
    reasoning: str


def parse_sentiment(text: str) -> Sentiment:
    raw = text.strip()
    # Models sometimes wrap JSON in a markdown fence anyway.
    if "```" in raw:
        parts = raw.split("```")
        if len(parts) >= 2:
            raw = parts[1].removeprefix("json").strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SentimentError(f"Unparseable sentiment response: {text[:200]!r}") from exc
    if not isinstance(data, dict):
        raise SentimentError(f"Unexpected sentiment response: {text[:200]!r}")
    score, label = data.get("score"), data.get("label")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not isinstance(label, str):
        raise SentimentError(f"Invalid sentiment response: {data!r}")
    return Sentiment(
        score=max(-1.0, min(1.0, float(score))),
        label=label.lower(),
        reasoning=str(data.get("reasoning") or ""),
    )


async def analyze_sentiment(text: str, provider: SentimentProvider) -> Sentiment:
    response = await provider.complete(SENTIMENT_PROMPT.format(text=text))
    return parse_sentiment(response)


def calculate_sentiment_score(
    issue: Sentiment, comments: list[Sentiment]
) -> tuple[int, dict]:
    """Fold item and comment sentiment into 0..30 points; more negative scores higher."""
    total = len(comments)
    negative = sum(1 for c in comments if c.score < NEGATIVE_CUTOFF)
    avg_comment = sum(c.score for c in comments) / total if total else 0.0
    combined = issue.score * ISSUE_WEIGHT + avg_comment * COMMENTS_WEIGHT
    ratio = negative / total if total else 0.0

    base = int((1 - combined) * 15 + 0.5)
    bonus = int(ratio * 15 + 0.5)
    score = max(0, min(30, base + bonus))
    return score, {
        "issue_sentiment": issue.score,
        "issue_label": issue.label,
        "avg_comment_sentiment": round(avg_comment, 4),
        "negative_comments": negative,
        "total_comments": total,
        "negative_ratio": round(ratio, 4),
        "reasoning": f"Issue sentiment: {issue.label}. {negative}/{total} negative comments.",
    }


def item_hash(item: Item) -> str:
    return content_hash(item.title, item.body, item.comments)


class CachedSentiment:
    """Sentiment lookup over records loaded for one read."""

    def __init__(self, records: dict[tuple[ItemKind, int], SentimentRecord]) -> None:
        self._records = records

    def _current(self, kind: ItemKind, item_id: int, digest: str) -> SentimentRecord | None:
        record = self._records.get((kind, item_id))
        if record is None or record.content_hash != digest:
            return None
        return record

    def get_sentiment(self, kind: ItemKind, item_id: int, digest: str) -> float | None:
        record = self._current(kind, item_id, digest)
        return record.score if record and record.error is None else None

    def is_unavailable(self, kind: ItemKind, item_id: int, digest: str) -> bool:
        record = self._current(kind, item_id, digest)
        return record is not None and record.error is not None


async def load_cached_sentiment(items: list[Item]) -> CachedSentiment:
    records: dict[tuple[ItemKind, int], SentimentRecord] = {}
    for kind in (ItemKind.ISSUE, ItemKind.PULL_REQUEST):
        ids = [i.item_id for i in items if i.kind == kind]
        for item_id, record in (await queries.get_sentiment_records(kind, ids)).items():
            records[(kind, item_id)] = record
    return CachedSentiment(records)


ProviderFactory = Callable[[AIProviderConfig], SentimentProvider]


class SentimentAugmenter:
    def __init__(
        self,
        provider_factory: ProviderFactory = build_provider,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._provider_factory = provider_factory
        self._clock = clock

    def needs_analysis(self, item: Item, record: SentimentRecord | None) -> bool:
        if record is None or record.content_hash != item_hash(item):
            return True
        if record.error is None:
            return False
        age_days = days_since(record.analyzed_at, self._clock())
        return age_days * 86400 >= settings.sentiment_retry_seconds

    async def pending_items(self, items: list[Item]) -> list[Item]:
        pending: list[Item] = []
        for kind in (ItemKind.ISSUE, ItemKind.PULL_REQUEST):
            subset = [i for i in items if i.kind == kind]
            records = await queries.get_sentiment_records(kind, [i.item_id for i in subset])
            pending.extend(i for i in subset if self.needs_analysis(i, records.get(i.item_id)))
        return pending

    async def analyze_item(self, item: Item, provider: SentimentProvider) -> SentimentRecord:
        record = SentimentRecord(
            item_kind=item.kind,
            item_id=item.item_id,
            repo_id=item.repo_id,
            content_hash=item_hash(item),
            analyzed_at=to_iso(self._clock()),
        )
        try:
            head = await analyze_sentiment(
                f"Title: {item.title}\n\nBody: {item.body or 'No description'}", provider
            )
            comments = [
                await analyze_sentiment(c.body, provider)
                for c in item.comments
                if c.body and c.body.strip()
            ]
        except Exception as exc:
            logger.warning("Sentiment analysis failed for #%d: %s", item.number, exc)
            record.error = str(exc) or exc.__class__.__name__
            return record
        record.score, record.metadata = calculate_sentiment_score(head, comments)
        return record

    async def backfill(
        self,
        repo: Repository,
        items: list[Item],
        config: RepoSettings,
        on_progress=None,
    ) -> int:
        """Analyze the items whose cached sentiment is missing, outdated or due a retry."""
        ai = resolve_ai_config(config)
        if ai is None:
            return 0
        todo = await self.pending_items(items)
        if not todo:
            return 0
        provider = self._provider_factory(ai)
        logger.info("Analyzing sentiment for %d items in %s", len(todo), repo.full_name)
        for done, item in enumerate(todo, start=1):
            await queries.upsert_sentiment(await self.analyze_item(item, provider))
            if on_progress is not None:
                await on_progress(done, len(todo))
        return len(todo)

    async def schedule(self, repo: Repository, items: list[Item], config: RepoSettings, orchestrator) -> bool:
        """Queue a background backfill for a viewed page when anything is missing."""
        if resolve_ai_config(config) is None or not items:
            return False
        if not await self.pending_items(items):
            return False

        async def job(on_progress) -> None:
            await self.backfill(repo, items, config, on_progress)

        return orchestrator.start_sentiment(repo, job)


async def test_api_key(config: AIProviderConfig, provider_factory: ProviderFactory = build_provider) -> dict:
    if not config.api_key:
        return {"ok": False, "message": "No API key configured"}
    try:
        provider = provider_factory(config)
        result = await analyze_sentiment("Thanks, this works great!", provider)
    except Exception as exc:
        logger.warning("API key test failed for %s: %s", config.provider, exc)
        return {"ok": False, "message": str(exc)}
    return {"ok": True, "message": f"{config.provider} responded ({result.label})"}


async def sentiment_status(repo: Repository, orchestrator) -> dict:
    """How many open items carry a sentiment score, and whether a backfill runs."""
    counts = await queries.count_items(repo.repo_id)
    return {
        "analyzed": await queries.count_sentiment(repo.repo_id),
        "total": counts["issues"] + counts["prs"],
        "processing": orchestrator.is_analyzing(repo.repo_id),
    }


augmenter = SentimentAugmenter()
