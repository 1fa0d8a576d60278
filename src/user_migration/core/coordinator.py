from __future__ import annotations

from collections.abc import Sequence
import logging
from time import perf_counter

from opentelemetry import trace

from user_migration.core.exceptions import SourceUnavailableError, StoreUnavailableError
from user_migration.core.metrics import InMemoryMigrationMetricsCollector
from user_migration.core.models import MigrationSummary, PassResult
from user_migration.core.orchestrator import UpsertOrchestrator
from user_migration.core.policies import MIGRATION_ORDER, policy_for
from user_migration.core.store import CanonicalStore
from user_migration.sources.base import LegacySourceReader

logger = logging.getLogger(__name__)


class MigrationCoordinator:
    """Runs the ordered collection passes and aggregates one summary per run."""

    def __init__(
        self,
        source: LegacySourceReader,
        store: CanonicalStore,
        orchestrator: UpsertOrchestrator | None = None,
        *,
        passes: Sequence[str] = MIGRATION_ORDER,
        metrics: InMemoryMigrationMetricsCollector | None = None,
    ) -> None:
        for collection in passes:
            policy_for(collection)
        self._source = source
        self._store = store
        self._orchestrator = orchestrator or UpsertOrchestrator(store)
        self._passes = tuple(passes)
        self._metrics = metrics
        self._tracer = trace.get_tracer("user-migration")

    async def verify_connections(self) -> None:
        try:
            await self._store.ping()
        except StoreUnavailableError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(f"canonical store unreachable: {exc}") from exc
        logger.info("migration_store_reachable")

        try:
            await self._source.ping()
        except SourceUnavailableError:
            raise
        except Exception as exc:
            raise SourceUnavailableError(f"legacy source unreachable: {exc}") from exc
        logger.info("migration_source_reachable", extra={"source": self._source.source_name})

    async def run_all(self) -> MigrationSummary:
        try:
            await self.verify_connections()
        except Exception:
            if self._metrics:
                self._metrics.increment_run("aborted")
            logger.error("migration_run_aborted", exc_info=True)
            raise

        logger.info("migration_run_started", extra={"passes": list(self._passes)})
        summary = MigrationSummary()
        total_started = perf_counter()
        for collection in self._passes:
            summary.add_pass(await self._run_pass(collection))

        logger.info(
            "migration_summary",
            extra={
                "migrated_count": summary.migrated_count,
                "error_count": summary.error_count,
                "anomaly_count": len(summary.anomalies),
                "duration_ms": round((perf_counter() - total_started) * 1000.0, 2),
            },
        )
        for conflict in summary.errors:
            logger.warning("migration_conflict", extra=conflict.to_dict())
        if self._metrics:
            self._metrics.increment_run("failed" if summary.error_count else "success")
        return summary

    async def _run_pass(self, collection: str) -> PassResult:
        with self._tracer.start_as_current_span("migration_pass") as span:
            span.set_attribute("migration.collection", collection)
            started = perf_counter()
            result = await self._orchestrator.run_pass(collection, self._source)
            span.set_attribute("migration.migrated_count", result.migrated_count)
            span.set_attribute("migration.conflict_count", len(result.conflicts))
        if self._metrics:
            self._metrics.observe_pass_duration(collection, (perf_counter() - started) * 1000.0)
            self._metrics.add_records(collection, "migrated", result.migrated_count)
            self._metrics.add_records(collection, "skipped", result.skipped_count)
            self._metrics.add_records(collection, "conflict", len(result.conflicts))
            self._metrics.add_anomalies(len(result.anomalies))
        return result
