"""
Remote insight feed.

Daily insights come from an external text-generation service. Results are
cached per local calendar day; concurrent refreshes for the same day share a
single request, and a refresh for a new day never cancels one still running
for another. When a request fails or times out the failure is recorded as a
string and the last good result (valid for 24 hours) or the local rule cards
stay visible.
"""

from __future__ import annotations

import asyncio
import hashlib
import http.client
import json
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from functools import partial
from typing import Any, Mapping, Optional, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog

from leora.config import DEFAULT_INSIGHTS_TIMEOUT_SECONDS, Settings, get_settings
from leora.dates import DateInput, as_reference, start_of_day, to_local
from leora.insight_engine import (
    InsightCard,
    RemoteAction,
    RemoteInsight,
    map_remote_insight,
    select_cards,
)

logger = structlog.get_logger(__name__)

DAILY_SCOPE = "daily"
RESULT_VALIDITY = timedelta(hours=24)
GATEWAY_CACHE_TTL_SECONDS = 60 * 60


def day_bucket(moment: DateInput = None) -> date:
    """Cache key for a moment: its local calendar day."""
    return start_of_day(as_reference(moment)).date()


class InsightGatewayError(RuntimeError):
    """Raised when the insight service is unreachable or answers badly."""


class InsightGateway(Protocol):
    def request_daily_insights(
        self,
        day: date,
        context: Mapping[str, Any],
        force: bool = False,
    ) -> list[RemoteInsight]:
        ...


def _fingerprint(*parts: str) -> str:
    digest = hashlib.sha1("-".join(parts).encode("utf-8"))
    return digest.hexdigest()[:12]


def parse_insight_response(
    body: Any,
    created_at: datetime,
    scope: str = DAILY_SCOPE,
) -> list[RemoteInsight]:
    """Validate a service response and turn it into ``RemoteInsight`` records.

    The body must be an object carrying ``insights`` and ``actions`` lists.
    The response-level actions are shared by every insight in it.
    """
    if not isinstance(body, dict):
        raise InsightGatewayError("Insight response must be a JSON object")
    raw_insights = body.get("insights")
    raw_actions = body.get("actions")
    if not isinstance(raw_insights, list) or not isinstance(raw_actions, list):
        raise InsightGatewayError("Insight response is missing insights or actions")

    actions = tuple(
        RemoteAction(
            type=str(item.get("type", "")),
            payload=item["payload"] if isinstance(item.get("payload"), dict) else {},
            label=item.get("label") if isinstance(item.get("label"), str) else None,
        )
        for item in raw_actions
        if isinstance(item, dict)
    )
    valid_until = created_at + RESULT_VALIDITY if scope == DAILY_SCOPE else None

    insights = []
    for index, item in enumerate(raw_insights):
        if not isinstance(item, dict):
            continue
        kind = str(item.get("kind", "combined"))
        title = str(item.get("title", ""))
        body_text = str(item.get("body", ""))
        insights.append(
            RemoteInsight(
                id=f"{scope}-{_fingerprint(kind, title, body_text, str(index))}",
                kind=kind,
                level=str(item.get("level", "info")),
                title=title,
                body=body_text,
                created_at=created_at,
                actions=actions,
                payload=item,
                valid_until=valid_until,
                scope=scope,
            )
        )
    return insights


@dataclass(frozen=True)
class CachedResponse:
    insights: list[RemoteInsight]
    expires_at: float


@dataclass
class HttpInsightGateway:
    """POSTs the daily context as JSON with bearer auth."""

    endpoint: str
    api_key: str
    timeout_seconds: float = DEFAULT_INSIGHTS_TIMEOUT_SECONDS
    cache_ttl_seconds: int = GATEWAY_CACHE_TTL_SECONDS
    user_id: str = "local-user"
    _cache: dict[str, CachedResponse] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["HttpInsightGateway"]:
        settings = settings or get_settings()
        if not settings.insights_enabled:
            return None
        return cls(
            endpoint=settings.insights_endpoint,
            api_key=settings.insights_api_key,
            timeout_seconds=settings.insights_timeout_seconds,
        )

    def request_daily_insights(
        self,
        day: date,
        context: Mapping[str, Any],
        force: bool = False,
    ) -> list[RemoteInsight]:
        cache_key = f"{self.user_id}:{DAILY_SCOPE}:{day.isoformat()}"
        now = time.monotonic()
        cached = self._cache.get(cache_key)
        if not force and cached and cached.expires_at > now:
            return cached.insights

        created_at = datetime.now(timezone.utc)
        payload = {
            "model": DAILY_SCOPE,
            "prompt": {
                "timestamp": created_at.isoformat(),
                "context": {"date": day.isoformat(), **dict(context)},
            },
            "userId": self.user_id,
            "force": force,
        }
        insights = parse_insight_response(self._post(payload), created_at)
        self._cache[cache_key] = CachedResponse(
            insights=insights, expires_at=now + self.cache_ttl_seconds
        )
        return insights

    def _post(self, payload: Mapping[str, Any]) -> Any:
        if not self.endpoint or not self.api_key:
            raise InsightGatewayError("Insight endpoint or API key is not configured")
        request = Request(
            self.endpoint,
            data=json.dumps(payload, default=str).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                return json.load(response)
        except HTTPError as exc:
            raise InsightGatewayError(f"Insight service returned HTTP {exc.code}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise InsightGatewayError("Insight service unreachable") from exc
        except ValueError as exc:
            raise InsightGatewayError("Insight service returned invalid JSON") from exc


@dataclass(frozen=True)
class FeedResult:
    bucket: date
    cards: tuple[InsightCard, ...]
    fetched_at: datetime
    valid_until: datetime


@dataclass(frozen=True)
class InsightFeedState:
    cards: list[InsightCard]
    source: str
    error: Optional[str] = None
    is_stale: bool = False
    bucket: Optional[date] = None


class InsightFeed:
    def __init__(
        self,
        gateway: Optional[InsightGateway],
        timeout_seconds: float = DEFAULT_INSIGHTS_TIMEOUT_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._timeout_seconds = timeout_seconds
        self._results: dict[date, FeedResult] = {}
        self._inflight: dict[date, asyncio.Task] = {}
        self._last_good: Optional[FeedResult] = None
        self._error: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "InsightFeed":
        settings = settings or get_settings()
        return cls(
            gateway=HttpInsightGateway.from_settings(settings),
            timeout_seconds=settings.insights_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return self._gateway is not None

    @property
    def error(self) -> Optional[str]:
        return self._error

    def is_loading(self, now: DateInput = None) -> bool:
        return day_bucket(now) in self._inflight

    async def refresh(
        self,
        now: DateInput = None,
        context: Optional[Mapping[str, Any]] = None,
        force: bool = False,
    ) -> Optional[FeedResult]:
        if self._gateway is None:
            return None
        moment = as_reference(now)
        bucket = day_bucket(moment)
        if not force and bucket in self._results:
            return self._results[bucket]

        task = self._inflight.get(bucket)
        if task is None:
            task = asyncio.ensure_future(self._fetch(bucket, moment, dict(context or {}), force))
            self._inflight[bucket] = task
            task.add_done_callback(partial(self._forget, bucket))
        # A cancelled caller must not cancel the request other callers share.
        return await asyncio.shield(task)

    def _forget(self, bucket: date, task: asyncio.Task) -> None:
        if self._inflight.get(bucket) is task:
            del self._inflight[bucket]

    async def _fetch(
        self,
        bucket: date,
        moment: datetime,
        context: Mapping[str, Any],
        force: bool,
    ) -> Optional[FeedResult]:
        log = logger.bind(bucket=bucket.isoformat(), force=force)
        log.info("insights_fetch_started")
        try:
            insights = await asyncio.wait_for(
                asyncio.to_thread(self._gateway.request_daily_insights, bucket, context, force),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._error = f"Insight request timed out after {self._timeout_seconds:g}s"
            log.warning("insights_fetch_timeout", timeout_seconds=self._timeout_seconds)
            return None
        except InsightGatewayError as exc:
            self._error = str(exc)
            log.warning("insights_fetch_failed", error=self._error)
            return None
        except Exception as exc:
            self._error = f"Insight request failed: {exc.__class__.__name__}"
            log.exception("insights_fetch_crashed")
            return None

        cards = tuple(
            map_remote_insight(insight) for insight in insights if insight.scope == DAILY_SCOPE
        )
        result = FeedResult(
            bucket=bucket,
            cards=cards,
            fetched_at=moment,
            valid_until=moment + RESULT_VALIDITY,
        )
        self._results[bucket] = result
        if cards:
            self._last_good = result
        # Days before the last good result can no longer be served.
        floor = min(bucket, self._last_good.bucket) if self._last_good else bucket
        self._results = {key: value for key, value in self._results.items() if key >= floor}
        self._error = None
        log.info("insights_fetch_succeeded", cards=len(cards))
        return result

    def current(
        self,
        fallback: Sequence[InsightCard],
        now: DateInput = None,
    ) -> InsightFeedState:
        moment = as_reference(now)
        bucket = day_bucket(moment)

        result = self._results.get(bucket)
        if result is not None and result.cards:
            return InsightFeedState(
                cards=select_cards(result.cards, fallback),
                source="remote",
                error=self._error,
                bucket=bucket,
            )

        last_good = self._last_good
        if last_good is not None and to_local(last_good.valid_until, moment) > moment:
            return InsightFeedState(
                cards=select_cards(last_good.cards, fallback),
                source="stale",
                error=self._error,
                is_stale=True,
                bucket=last_good.bucket,
            )

        return InsightFeedState(
            cards=list(fallback),
            source="local",
            error=self._error,
            bucket=bucket,
        )
