from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass


@dataclass(frozen=True)
class PassDuration:
    collection: str
    duration_ms: float


class InMemoryMigrationMetricsCollector:
    def __init__(self) -> None:
        self.pass_durations: list[PassDuration] = []
        self.migration_run_total: dict[str, int] = defaultdict(int)
        self.migration_records_total: dict[tuple[str, str], int] = defaultdict(int)
        self.anomaly_count = 0

    def observe_pass_duration(self, collection: str, duration_ms: float) -> None:
        self.pass_durations.append(PassDuration(collection=collection, duration_ms=duration_ms))

    def increment_run(self, status: str) -> None:
        self.migration_run_total[status] += 1

    def add_records(self, collection: str, result: str, count: int) -> None:
        if count <= 0:
            return
        self.migration_records_total[(collection, result)] += count

    def add_anomalies(self, count: int) -> None:
        self.anomaly_count += max(count, 0)
