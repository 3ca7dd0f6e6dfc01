from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Callable

from tutordesk.config import settings


logger = logging.getLogger('tutordesk.metrics')

BOOKING_ACCEPTED = 'ACCEPTED'


class MetricsExporter:
    """Receives one minute of counts for a metric family ('cache', 'booking', 'job')."""

    def export_minute(self, family: str, *, minute_start: datetime, counts: dict[str, int]) -> None:
        raise NotImplementedError


class LogMetricsExporter(MetricsExporter):
    def export_minute(self, family: str, *, minute_start: datetime, counts: dict[str, int]) -> None:
        rendered = ' '.join(f'{key}={counts[key]}' for key in sorted(counts))
        logger.info('%s_metrics minute=%s %s', family, minute_start.isoformat(), rendered)


_exporter: MetricsExporter = LogMetricsExporter()


def set_metrics_exporter(exporter: MetricsExporter) -> MetricsExporter:
    global _exporter
    previous = _exporter
    _exporter = exporter
    return previous


class MinuteCounter:
    """Counts named events per wall-clock minute and exports each finished minute."""

    def __init__(self, family: str, *, clock: Callable[[], float] = time.time) -> None:
        self.family = family
        self._clock = clock
        self._lock = threading.Lock()
        self._minute_epoch: int | None = None
        self._counts: dict[str, int] = {}

    def _flush_locked(self) -> None:
        if not self._counts or self._minute_epoch is None:
            return
        minute_start = datetime.fromtimestamp(self._minute_epoch, tz=timezone.utc)
        try:
            _exporter.export_minute(self.family, minute_start=minute_start, counts=dict(self._counts))
        except Exception:
            logger.exception('metrics_export_failed family=%s minute=%s', self.family, minute_start.isoformat())
        self._counts.clear()

    def record(self, key: str) -> None:
        minute_epoch = int(self._clock() // 60) * 60
        with self._lock:
            if self._minute_epoch is not None and minute_epoch != self._minute_epoch:
                self._flush_locked()
            self._minute_epoch = minute_epoch
            self._counts[key] = self._counts.get(key, 0) + 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()


_cache_counter = MinuteCounter('cache')
_booking_counter = MinuteCounter('booking')
_job_counter = MinuteCounter('job')


def record_cache_event(event: str) -> None:
    _cache_counter.record(event)


def record_booking_outcome(code: str | None) -> None:
    """Count one validation outcome; `None` means the booking was accepted."""
    _booking_counter.record(code or BOOKING_ACCEPTED)


def booking_outcome_counts() -> dict[str, int]:
    return _booking_counter.snapshot()


def flush_metrics() -> None:
    for counter in (_cache_counter, _booking_counter, _job_counter):
        counter.flush()


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        @wraps(func)
        def wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - started) * 1000.0
                if duration_ms >= threshold_value:
                    logger.info('service_timer label=%s duration_ms=%.2f event=service', label, duration_ms)

        return wrapper

    return decorator


def run_timed_job(label: str, fn: Callable[[], object]) -> object:
    start = time.perf_counter()
    logger.info('job_start name=%s', label)
    status = 'ok'
    try:
        return fn()
    except Exception:
        status = 'failed'
        logger.exception('job_failed name=%s duration_ms=%.2f', label, (time.perf_counter() - start) * 1000.0)
        raise
    finally:
        _job_counter.record(f'{label}:{status}')
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.info('job_end name=%s status=%s duration_ms=%.2f', label, status, duration_ms)
