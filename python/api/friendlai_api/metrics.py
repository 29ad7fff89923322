"""In-process dispatch metrics rendered in Prometheus text format.

Counters worth watching on a live queue::

    jobs_submitted_total{kind="single|composite"}
    jobs_claimed_total{tier="preferred|available"}
    jobs_fetch_empty_total
    jobs_reclaimed_total
    job_reports_total{status="1|3|4"}

plus ``http_requests_total`` and ``http_request_duration_ms`` from the
request middleware. Values are per process; scrape every API replica.
"""
from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional


@dataclass
class _Summary:
    count: int = 0
    total: float = 0.0
    maximum: float = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.maximum = max(self.maximum, value)


_lock = threading.Lock()
_counters: dict[str, int] = defaultdict(int)
_summaries: dict[str, _Summary] = defaultdict(_Summary)


def _key(name: str, labels: Optional[dict] = None) -> str:
    if labels:
        lstr = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{lstr}}}"
    return name


def _suffixed(key: str, suffix: str) -> str:
    name, brace, rest = key.partition("{")
    return f"{name}{suffix}{brace}{rest}"


def inc(name: str, labels: Optional[dict] = None, value: int = 1) -> None:
    key = _key(name, labels)
    with _lock:
        _counters[key] += value


def observe(name: str, value: float, labels: Optional[dict] = None) -> None:
    key = _key(name, labels)
    with _lock:
        _summaries[key].add(value)


def counter_value(name: str, labels: Optional[dict] = None) -> int:
    with _lock:
        return _counters.get(_key(name, labels), 0)


def reset() -> None:
    with _lock:
        _counters.clear()
        _summaries.clear()


def render_prometheus() -> str:
    lines: list[str] = []
    typed: set[str] = set()

    def _type_line(key: str, kind: str) -> None:
        name = key.partition("{")[0]
        if name not in typed:
            typed.add(name)
            lines.append(f"# TYPE {name} {kind}")

    with _lock:
        for key, val in sorted(_counters.items()):
            _type_line(key, "counter")
            lines.append(f"{key} {val}")
        for key, summary in sorted(_summaries.items()):
            _type_line(key, "summary")
            lines.append(f"{_suffixed(key, '_count')} {summary.count}")
            lines.append(f"{_suffixed(key, '_sum')} {summary.total:.3f}")
            lines.append(f"{_suffixed(key, '_max')} {summary.maximum:.3f}")
    return "\n".join(lines) + "\n" if lines else ""
