"""
Thread-safe in-memory metrics for the generation worker.

Counters used by the pipeline:
  requests.<entry>      — calls per entry point
  cache.hit / cache.miss
  jobs.created / jobs.coalesced / jobs.completed / jobs.failed
  stages.<stage>.<source>
  fallbacks.<stage>     — live provider gave up, mock used instead
  errors.<kind>

All data is ephemeral (resets on restart).
"""

import threading
import time
from collections import defaultdict
from typing import Dict, List

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)
_gauges: Dict[str, float] = defaultdict(float)

# ── Latency samples (last 100 per stage) ─────────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

# ── Error log (last 50 errors) ───────────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50

_started_at = time.time()


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def set_gauge(name: str, value: float):
    """Set a gauge value (e.g. 'active_jobs', 'cache_entries')."""
    with _lock:
        _gauges[name] = value


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def record_latency(name: str, duration_ms: float):
    """Record a latency sample in milliseconds."""
    with _lock:
        samples = _latency_samples[name]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[name] = samples[-MAX_SAMPLES:]


def record_error(stage: str, error_kind: str, message: str, job_id: str = ""):
    """Record a stage failure for the /metrics error log."""
    with _lock:
        _counters[f"errors.{error_kind}"] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "stage": stage,
            "error_kind": error_kind,
            "message": message[:300],
            "job_id": job_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        latency_stats = {}
        for name, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[name] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        hits = _counters.get("cache.hit", 0)
        lookups = hits + _counters.get("cache.miss", 0)

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "cache_hit_rate": round(hits / lookups * 100, 2) if lookups else 0,
            "recent_errors": list(_recent_errors[-10:]),
            "uptime_seconds": now - _started_at,
        }


def reset():
    """Clear everything (tests)."""
    with _lock:
        _counters.clear()
        _gauges.clear()
        _latency_samples.clear()
        _recent_errors.clear()
