"""
Health/refresh sweep.

Each sweep selects connected and errored integrations, due tokens first,
and refreshes the ones whose tokens are due. Database work stays
on the calling thread; only provider calls fan out to a bounded thread
pool. One integration's failure never stops the batch, and calls still
running at the sweep deadline are abandoned and recorded as errors.
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import and_, case, or_
from sqlalchemy.orm import Session, aliased

from ..config import SchedulerConfig
from ..constants import CredentialKind, IntegrationStatus, Timeouts
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_credential_models import Credential
from ..db.db_integration_models import Integration
from ..schemas.provider_schemas import RefreshResult
from ..schemas.result_schemas import SweepSummary
from ..utils.logger import get_logger
from .token_refresh_service import RefreshOutcome, RefreshPlan, TokenRefreshService

PROVIDER_TIMEOUT_MESSAGE = "Provider call timed out"


class HealthScheduler:
    """Runs one health/refresh sweep over a batch of integrations."""

    def __init__(self, session: Session, refresh_service: TokenRefreshService, config: Optional[SchedulerConfig] = None):
        self.session = session
        self.refresh_service = refresh_service
        self.config = config or SchedulerConfig()
        self.logger = get_logger()

    def select_batch(self, now: Optional[datetime] = None):
        """
        Pick up to ``batch_size`` connected or errored integrations.

        Integrations whose oauth token is due come first, then errored ones
        and those without an active credential, then the rest. Within a tier
        the oldest-updated row wins, so rows that keep failing rotate to the
        back as ``mark_error`` touches them.
        """
        now = now or utc_now()
        cutoff = now + timedelta(seconds=self.refresh_service.lifecycle.config.refresh_threshold_seconds)
        credential = aliased(Credential)
        due = and_(
            credential.credential_type == CredentialKind.OAUTH.value,
            credential.expires_at.isnot(None),
            credential.expires_at <= cutoff,
        )
        needs_attention = or_(
            Integration.status == IntegrationStatus.ERROR.value,
            credential.id.is_(None),
        )
        priority = case((due, 0), (needs_attention, 1), else_=2)
        return (
            self.session.query(Integration)
            .outerjoin(
                credential,
                and_(
                    credential.user_id == Integration.user_id,
                    credential.platform == Integration.provider_key,
                    credential.is_active.is_(True),
                ),
            )
            .filter(
                Integration.status.in_(
                    [IntegrationStatus.CONNECTED.value, IntegrationStatus.ERROR.value]
                )
            )
            .order_by(priority, Integration.updated_at.asc())
            .limit(self.config.batch_size)
            .all()
        )

    @operation(name="health_scheduler.sweep")
    def sweep(self) -> SweepSummary:
        started = time.monotonic()
        deadline = started + self.config.sweep_deadline_seconds
        summary = SweepSummary()
        now = utc_now()

        plans: Dict[str, RefreshPlan] = {}
        for integration in self.select_batch(now):
            summary.checked += 1
            try:
                prepared = self.refresh_service.prepare(integration, now=now)
            except Exception as e:
                self.logger.exception(
                    f"Health check failed for integration: {str(e)}",
                    extra={"integration_id": integration.id, "platform": integration.provider_key},
                )
                self.session.rollback()
                self._count(summary, RefreshOutcome.ERROR, integration.id)
                continue

            if prepared.plan is not None:
                plans[prepared.plan.integration_id] = prepared.plan
            else:
                self._count(summary, prepared.outcome, integration.id)

        if plans:
            self._run_plans(plans, deadline, summary)

        summary.duration_ms = round((time.monotonic() - started) * 1000, 2)
        self.logger.info(
            "Health sweep completed",
            extra={
                "checked": summary.checked,
                "refreshed": summary.refreshed,
                "errors": summary.errors,
                "skipped": summary.skipped,
                "timed_out": summary.timed_out,
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    def _run_plans(self, plans: Dict[str, RefreshPlan], deadline: float, summary: SweepSummary) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.max_concurrent_calls, len(plans)),
            thread_name_prefix="provider-call",
        )
        futures = {executor.submit(TokenRefreshService.call, plan): plan for plan in plans.values()}
        pending = set(futures)
        try:
            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
                for future in done:
                    plan = futures[future]
                    self._apply(plan, future, summary)
        finally:
            # Never block the sweep on a provider that outlived the deadline
            executor.shutdown(wait=False, cancel_futures=True)

        for future in pending:
            plan = futures[future]
            summary.timed_out += 1
            self.logger.warning(
                PROVIDER_TIMEOUT_MESSAGE,
                extra={"integration_id": plan.integration_id, "platform": plan.platform},
            )
            self._guarded(plan, summary, lambda: self.refresh_service.abandon(plan, PROVIDER_TIMEOUT_MESSAGE))
            self._count(summary, RefreshOutcome.ERROR, plan.integration_id)

    def _apply(self, plan: RefreshPlan, future, summary: SweepSummary) -> None:
        try:
            result: RefreshResult = future.result()
        except Exception as e:
            result = RefreshResult(success=False, error=str(e) or type(e).__name__)

        outcome = self._guarded(plan, summary, lambda: self.refresh_service.apply(plan, result))
        self._count(summary, outcome or RefreshOutcome.ERROR, plan.integration_id)

    def _guarded(self, plan: RefreshPlan, summary: SweepSummary, fn: Callable):
        try:
            return fn()
        except Exception as e:
            self.logger.exception(
                f"Failed to record refresh result: {str(e)}",
                extra={"integration_id": plan.integration_id, "platform": plan.platform},
            )
            self.session.rollback()
            return None

    @staticmethod
    def _count(summary: SweepSummary, outcome: Optional[RefreshOutcome], integration_id: str) -> None:
        if outcome == RefreshOutcome.REFRESHED:
            summary.refreshed += 1
        elif outcome == RefreshOutcome.ERROR:
            summary.errors += 1
            summary.error_integration_ids.append(integration_id)
        else:
            summary.skipped += 1


class HealthSweepWorker:
    """Background thread that runs a sweep every ``interval_seconds`` until stopped."""

    def __init__(self, sweep: Callable[[], SweepSummary], interval_seconds: float = Timeouts.SWEEP_INTERVAL):
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.logger = get_logger()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_summary: Optional[SweepSummary] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="health-sweep-worker", daemon=True)
        self._thread.start()
        self.logger.info("Health sweep worker started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: float = Timeouts.WORKER_SHUTDOWN) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info("Health sweep worker stopped")

    def run_once(self) -> Optional[SweepSummary]:
        try:
            self.last_summary = self.sweep()
        except Exception as e:
            self.logger.exception(
                f"Health sweep failed: {str(e)}", extra={"error_type": type(e).__name__}
            )
            return None
        return self.last_summary

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)
