"""
Poller metrics with Prometheus text exposition.

Every metric the poller records is declared in ``METRICS`` so the exposition
carries HELP/TYPE lines even before the first sample. Series may carry labels
(``event_type`` for trigger outcomes); reading a metric without labels sums
all of its series.
"""

from __future__ import annotations

import time
from collections import defaultdict

PREFIX = "poller_"

Labels = tuple[tuple[str, str], ...]

METRICS: dict[str, tuple[str, str]] = {
    "polls_total": ("counter", "Poll cycles started"),
    "poll_errors_total": ("counter", "Poll cycles aborted by a board error"),
    "triggers_claimed_total": ("counter", "Triggers claimed from the board"),
    "triggers_completed_total": ("counter", "Triggers whose cron job ran and were acknowledged completed"),
    "triggers_failed_total": ("counter", "Triggers acknowledged failed"),
    "ack_errors_total": ("counter", "Acknowledgements the board did not accept"),
    "board_retries_total": ("counter", "Board requests retried after a 5xx, 429 or connection error"),
    "board_errors_total": ("counter", "Board requests that failed for good"),
    "last_batch_size": ("gauge", "Triggers claimed by the most recent cycle"),
    "last_cycle_seconds": ("gauge", "Duration of the most recent cycle"),
    "last_poll_timestamp_seconds": ("gauge", "Unix time the most recent cycle finished"),
}


def _labels(labels: dict[str, str]) -> Labels:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _render(name: str, labels: Labels) -> str:
    if not labels:
        return f"{PREFIX}{name}"
    inner = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{PREFIX}{name}{{{inner}}}"


def _format(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


class MetricsCollector:
    def __init__(self) -> None:
        self._values: dict[str, dict[Labels, float]] = defaultdict(dict)
        self._kinds: dict[str, str] = {name: kind for name, (kind, _) in METRICS.items()}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: str) -> None:
        self._kinds.setdefault(name, "counter")
        series = self._values[name]
        key = _labels(labels)
        series[key] = series.get(key, 0) + value

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        self._kinds.setdefault(name, "gauge")
        self._values[name][_labels(labels)] = value

    def get(self, name: str, **labels: str) -> int | float:
        series = self._values.get(name, {})
        if labels:
            return series.get(_labels(labels), 0)
        return sum(series.values())

    def record_cycle(self, started: float, claimed: int) -> None:
        """Gauges describing the poll cycle that began at ``started`` (monotonic)."""
        self.set_gauge("last_batch_size", claimed)
        self.set_gauge("last_cycle_seconds", round(time.monotonic() - started, 3))
        self.set_gauge("last_poll_timestamp_seconds", round(time.time(), 3))

    def to_prometheus(self) -> str:
        lines = []
        for name in sorted(self._kinds):
            kind = self._kinds[name]
            help_text = METRICS.get(name, (kind, name.replace("_", " ")))[1]
            lines.append(f"# HELP {PREFIX}{name} {help_text}")
            lines.append(f"# TYPE {PREFIX}{name} {kind}")
            series = self._values.get(name) or {(): 0}
            for labels, value in sorted(series.items()):
                lines.append(f"{_render(name, labels)} {_format(value)}")
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {time.time() - self._start_time:.1f}")
        return "\n".join(lines) + "\n"
