"""Health analysis for the 12-hour feed ingestion cycle.

Each finished cycle reports its counters (articles, duplicates, feeds,
latency).  ``CycleHealthMonitor.analyze`` derives error / feed success rates,
flags anomalies against fixed thresholds, classifies the cycle as
healthy / degraded / critical, raises one alert per anomaly and records the
result in Firestore (``cycle_health_v2`` by default).

Persistence is best effort: a Firestore outage is logged and the analysis is
still returned to the caller.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from dateutil import parser

from utils.firestore_handle import FirestoreHandleProvider
from utils.settings import get_setting

LOG = logging.getLogger(__name__)

DEFAULT_COLLECTION = "cycle_health_v2"
CYCLE_INTERVAL_MS = 12 * 60 * 60 * 1000

STATUS_HEALTHY = "healthy"
STATUS_DEGRADED = "degraded"
STATUS_CRITICAL = "critical"

HEALTHY_ERROR_RATE = 0.05

DEGRADED_THRESHOLDS = {
    "error_rate": 0.10,
    "duplicate_rate": 0.10,
    "feed_success_rate": 0.75,
    "min_articles": 20,
    "quality_score": 60,
    "max_latency_ms": 10000,
}

_ALERT_TYPES = {
    "high_error_rate": "performance_issue",
    "low_article_count": "cycle_delay",
    "high_duplicate_rate": "duplicate_spike",
    "feed_failure": "feed_failure",
    "latency_spike": "performance_issue",
    "quality_drop": "quality_issue",
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class CycleAnomaly:
    type: str
    severity: str  # warning | critical
    message: str
    value: float
    threshold: float
    timestamp: datetime


@dataclass(frozen=True)
class CycleAlert:
    id: str
    severity: str  # info | warning | critical
    type: str
    message: str
    timestamp: datetime
    resolved: bool = False
    resolution_time: Optional[datetime] = None


@dataclass
class CycleHealthMetrics:
    cycle_id: str
    timestamp: datetime
    status: str
    scheduled_time: datetime
    expected_duration: float
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    actual_duration: Optional[float] = None
    delay_ms: Optional[float] = None
    articles_processed: int = 0
    articles_skipped: int = 0
    articles_with_errors: int = 0
    duplicates_detected: int = 0
    duplicate_removal_rate: float = 0.0
    average_quality_score: float = 0.0
    articles_with_ai_score: int = 0
    average_ai_score: float = 0.0
    feeds_processed: int = 0
    feeds_succeeded: int = 0
    feeds_failed: int = 0
    feed_success_rate: float = 0.0
    error_rate: float = 0.0
    avg_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    anomalies: List[CycleAnomaly] = field(default_factory=list)
    alerts: List[CycleAlert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _snake(key: str) -> str:
    # articlesWithAIScore -> articles_with_ai_score
    return _CAMEL_RE.sub("_", key.replace("AI", "Ai")).lower()


def _normalize_keys(metrics: Mapping[str, Any]) -> Dict[str, Any]:
    return {_snake(str(k)): v for k, v in metrics.items()}


def _finite(key: str, raw: Any) -> float:
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"{key} must be a finite number, got {raw!r}")
    return value


def _num(data: Mapping[str, Any], key: str, default: float = 0) -> float:
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    return _finite(key, raw)


def _opt_num(data: Mapping[str, Any], key: str) -> Optional[float]:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    return _finite(key, raw)


def _opt_dt(data: Mapping[str, Any], key: str) -> Optional[datetime]:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(_finite(key, raw), tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"{key} is out of range: {raw!r}") from exc
    parsed = parser.isoparse(str(raw))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _plain(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleHealthMonitor:
    def __init__(
        self,
        provider: FirestoreHandleProvider,
        collection: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.provider = provider
        self.collection = collection or get_setting("cycle_health_collection", DEFAULT_COLLECTION)
        self._clock = clock or _utcnow

    def analyze(self, metrics: Mapping[str, Any]) -> CycleHealthMetrics:
        """Analyze one cycle's counters, persist the result and return it."""
        data = _normalize_keys(metrics)
        now = self._clock()

        processed = int(_num(data, "articles_processed"))
        skipped = int(_num(data, "articles_skipped"))
        errors = int(_num(data, "articles_with_errors"))
        feeds_processed = int(_num(data, "feeds_processed"))
        feeds_succeeded = int(_num(data, "feeds_succeeded"))

        total = processed + skipped
        error_rate = errors / total if total > 0 else 0.0
        feed_success_rate = feeds_succeeded / feeds_processed if feeds_processed > 0 else 0.0

        anomalies = self.detect_anomalies(
            error_rate=error_rate,
            duplicate_rate=_num(data, "duplicate_removal_rate"),
            feed_success_rate=feed_success_rate,
            articles_processed=processed,
            quality_score=_num(data, "average_quality_score"),
            max_latency_ms=_num(data, "max_latency_ms"),
            now=now,
        )

        result = CycleHealthMetrics(
            cycle_id=str(data.get("cycle_id") or f"cycle_{_epoch_ms(now)}"),
            timestamp=now,
            status=determine_status(anomalies, error_rate, feed_success_rate),
            scheduled_time=_opt_dt(data, "scheduled_time") or now,
            expected_duration=_num(data, "expected_duration", CYCLE_INTERVAL_MS) or CYCLE_INTERVAL_MS,
            actual_start_time=_opt_dt(data, "actual_start_time"),
            actual_end_time=_opt_dt(data, "actual_end_time"),
            actual_duration=_opt_num(data, "actual_duration"),
            delay_ms=_opt_num(data, "delay_ms"),
            articles_processed=processed,
            articles_skipped=skipped,
            articles_with_errors=errors,
            duplicates_detected=int(_num(data, "duplicates_detected")),
            duplicate_removal_rate=_num(data, "duplicate_removal_rate"),
            average_quality_score=_num(data, "average_quality_score"),
            articles_with_ai_score=int(_num(data, "articles_with_ai_score")),
            average_ai_score=_num(data, "average_ai_score"),
            feeds_processed=feeds_processed,
            feeds_succeeded=feeds_succeeded,
            feeds_failed=int(_num(data, "feeds_failed")),
            feed_success_rate=feed_success_rate,
            error_rate=error_rate,
            avg_latency_ms=_num(data, "avg_latency_ms"),
            max_latency_ms=_num(data, "max_latency_ms"),
            p95_latency_ms=_num(data, "p95_latency_ms"),
            anomalies=anomalies,
            alerts=generate_alerts(anomalies, now),
        )
        self.persist(result)
        return result

    def detect_anomalies(
        self,
        *,
        error_rate: float,
        duplicate_rate: float,
        feed_success_rate: float,
        articles_processed: int,
        quality_score: float,
        max_latency_ms: float,
        now: datetime,
    ) -> List[CycleAnomaly]:
        limits = DEGRADED_THRESHOLDS
        found: List[CycleAnomaly] = []

        if error_rate > limits["error_rate"]:
            found.append(CycleAnomaly(
                "high_error_rate",
                "critical" if error_rate > 0.15 else "warning",
                f"Error rate {error_rate * 100:.2f}% exceeds threshold",
                error_rate, limits["error_rate"], now,
            ))
        if duplicate_rate > limits["duplicate_rate"]:
            found.append(CycleAnomaly(
                "high_duplicate_rate",
                "critical" if duplicate_rate > 0.15 else "warning",
                f"Duplicate rate {duplicate_rate * 100:.2f}% exceeds threshold",
                duplicate_rate, limits["duplicate_rate"], now,
            ))
        if feed_success_rate < limits["feed_success_rate"]:
            found.append(CycleAnomaly(
                "feed_failure",
                "critical" if feed_success_rate < 0.5 else "warning",
                f"Feed success rate {feed_success_rate * 100:.2f}% below threshold",
                feed_success_rate, limits["feed_success_rate"], now,
            ))
        if articles_processed < limits["min_articles"]:
            found.append(CycleAnomaly(
                "low_article_count",
                "critical" if articles_processed < 10 else "warning",
                f"Only {articles_processed} articles processed, below threshold",
                articles_processed, limits["min_articles"], now,
            ))
        if quality_score < limits["quality_score"]:
            found.append(CycleAnomaly(
                "quality_drop",
                "critical" if quality_score < 50 else "warning",
                f"Quality score {quality_score:.1f} below threshold",
                quality_score, limits["quality_score"], now,
            ))
        if max_latency_ms > limits["max_latency_ms"]:
            found.append(CycleAnomaly(
                "latency_spike",
                "critical" if max_latency_ms > 20000 else "warning",
                f"Max latency {_plain(max_latency_ms)}ms exceeds threshold",
                max_latency_ms, limits["max_latency_ms"], now,
            ))
        return found

    def persist(self, result: CycleHealthMetrics) -> bool:
        try:
            db = self.provider.get_database_handle()
            db.collection(self.collection).add(result.to_dict())
        except Exception as exc:  # noqa: BLE001
            LOG.warning("[cycle_health] persist failed for %s: %s", result.cycle_id, exc)
            return False
        LOG.info("[cycle_health] metrics persisted for cycle %s (%s)", result.cycle_id, result.status)
        return True

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Newest-first stored analyses."""
        db = self.provider.get_database_handle()
        query = (
            db.collection(self.collection)
            .order_by("timestamp", direction="DESCENDING")
            .limit(int(limit))
        )
        items: List[Dict[str, Any]] = []
        for snap in query.stream():
            doc = snap.to_dict() or {}
            doc.setdefault("cycle_id", snap.id)
            items.append(doc)
        return items


def determine_status(anomalies: List[CycleAnomaly], error_rate: float, feed_success_rate: float) -> str:
    if any(a.severity == "critical" for a in anomalies) or error_rate > 0.20 or feed_success_rate < 0.5:
        return STATUS_CRITICAL
    if anomalies or error_rate > HEALTHY_ERROR_RATE:
        return STATUS_DEGRADED
    return STATUS_HEALTHY


def generate_alerts(anomalies: List[CycleAnomaly], now: datetime) -> List[CycleAlert]:
    stamp = _epoch_ms(now)
    return [
        CycleAlert(
            id=f"alert_{stamp}_{idx}",
            severity="critical" if a.severity == "critical" else "warning",
            type=_ALERT_TYPES.get(a.type, "performance_issue"),
            message=a.message,
            timestamp=a.timestamp,
        )
        for idx, a in enumerate(anomalies)
    ]
