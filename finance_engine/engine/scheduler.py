"""
Obligation Scheduler

Turns recurring obligation templates into ledger entries when they fall due.

Flow of one evaluation pass:
1. Select obligations that are active, unpaused and due at `now`
2. Manual obligations -> "due-obligation" alert, nothing else changes
3. Auto obligations -> process(): claim the occurrence (compare-and-set),
   create the ledger entry, then append history + advance next_due_date +
   maybe deactivate + release the claim in one write

DESIGN DECISION: The claim is written before the ledger is touched. Two
workers racing on one occurrence both try to store the claim against the
same revision; only one succeeds, and only that one writes a ledger entry.
A claim older than claim_timeout_seconds is treated as abandoned.

DESIGN DECISION: A failed ledger write is recorded in the history and the
schedule is left where it was. The obligation stays due and the next pass
retries it. The ledger write itself is never repeated in here; "retry"
simply means the date was not advanced.

DESIGN DECISION: There is no catch-up. An obligation that missed three
occurrences (paused, or the job did not run) is processed once per pass,
one occurrence at a time, never in a burst.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from finance_engine.audit import AuditLogger, create_correlation_id
from finance_engine.config import EngineSettings, get_settings
from finance_engine.engine.errors import InvalidStateError, OccurrenceClaimedError
from finance_engine.engine.locks import EntityLocks
from finance_engine.models.alert import Alert, AlertKind
from finance_engine.models.audit import AuditEventType
from finance_engine.models.ledger import EntryStatus, LedgerEntryDraft
from finance_engine.models.obligation import (
    ExecutionOutcome,
    ExecutionRecord,
    ObligationCreate,
    ObligationResult,
    ObligationUpdate,
    ProcessResult,
    ProcessStatus,
    RecurringObligation,
)
from finance_engine.scheduling import (
    calculate_next_due_date,
    first_due_date,
    is_due,
    replay_next_due_date,
    upcoming_occurrences,
)
from finance_engine.services.alerts import AlertSink
from finance_engine.services.ledger import LedgerAccessor, LedgerError
from finance_engine.services.storage import (
    ConcurrencyError,
    NotFoundError,
    ObligationRepository,
    StorageError,
)

logger = structlog.get_logger(__name__)


class ObligationScheduler:
    """
    Evaluates and processes recurring obligations.

    All collaborators are injected; the scheduler owns no state besides
    its per-entity locks.
    """

    def __init__(
        self,
        repository: ObligationRepository,
        ledger: LedgerAccessor,
        alert_sink: Optional[AlertSink] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        locks: Optional[EntityLocks] = None,
    ):
        self._repository = repository
        self._ledger = ledger
        self._alert_sink = alert_sink
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().engine
        self._locks = locks or EntityLocks()

    async def _require(self, obligation_id: UUID) -> RecurringObligation:
        obligation = await self._repository.get(obligation_id)
        if obligation is None:
            raise NotFoundError(f"Obligation not found: {obligation_id}")
        return obligation

    @retry(
        retry=retry_if_exception_type(ConcurrencyError),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _mutate(
        self,
        obligation_id: UUID,
        change: Callable[[RecurringObligation], None],
    ) -> RecurringObligation:
        """
        Read, apply `change`, compare-and-set. Lost races re-read and re-apply.

        Callers hold the obligation's entity lock.
        """
        obligation = await self._require(obligation_id)
        change(obligation)
        return await self._repository.save(obligation)

    def _claim_is_live(self, obligation: RecurringObligation, now: datetime) -> bool:
        if obligation.claim_id is None or obligation.claimed_due_date != obligation.next_due_date:
            return False
        age = (now - obligation.claimed_at).total_seconds()
        return age < self._settings.claim_timeout_seconds

    @staticmethod
    def _release_claim(obligation: RecurringObligation) -> None:
        obligation.claim_id = None
        obligation.claimed_due_date = None
        obligation.claimed_at = None

    async def _emit(self, alert: Alert) -> None:
        if not self._alert_sink:
            return
        try:
            await self._alert_sink.emit(alert)
        except Exception as e:
            # Delivery is the sink's problem; the pass carries on
            logger.error(
                "alert_emit_failed",
                alert_kind=alert.kind.value,
                entity_id=str(alert.entity_id),
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_obligation(
        self,
        user_id: str,
        data: ObligationCreate,
        now: datetime,
    ) -> RecurringObligation:
        """
        Create an obligation and compute its first due date.

        Args:
            user_id: Owning user
            data: Validated template and schedule
            now: Creation timestamp

        Returns:
            The stored obligation
        """
        due = first_due_date(
            data.start_date,
            data.frequency,
            data.day_of_month,
            data.day_of_week,
        )
        obligation = RecurringObligation(
            user_id=user_id,
            **data.model_dump(),
            initial_due_date=due,
            next_due_date=due,
            created_at=now,
            updated_at=now,
        )
        stored = await self._repository.add(obligation)

        logger.debug(
            "obligation_created",
            obligation_id=str(stored.id),
            next_due_date=due.isoformat(),
        )
        if self._audit_logger:
            await self._audit_logger.log_obligation_created(
                obligation_id=stored.id,
                user_id=user_id,
                name=stored.name,
                next_due_date=due.isoformat(),
                timestamp=now,
            )
        return stored

    async def get_obligation(self, obligation_id: UUID) -> RecurringObligation:
        return await self._require(obligation_id)

    async def list_obligations(self, user_id: str) -> list[RecurringObligation]:
        return await self._repository.list_obligations(user_id=user_id)

    async def update_obligation(
        self,
        obligation_id: UUID,
        changes: ObligationUpdate,
        now: datetime,
    ) -> RecurringObligation:
        """
        Edit template or schedule fields.

        next_due_date is not recomputed: a new frequency or anchor takes
        effect from the next advance, so the due date never moves backward.

        Raises:
            NotFoundError: Unknown obligation
            ValueError: The new end date precedes the start date
        """
        updates = changes.model_dump(exclude_unset=True)

        def change(obligation: RecurringObligation) -> None:
            end_date = updates.get("end_date", obligation.end_date)
            if end_date is not None and end_date < obligation.start_date:
                raise ValueError("End date cannot be before start date")
            for field, value in updates.items():
                setattr(obligation, field, value)
            obligation.updated_at = now

        async with self._locks.hold(obligation_id):
            stored = await self._mutate(obligation_id, change)

        if self._audit_logger:
            await self._audit_logger.log_obligation_state(
                event_type=AuditEventType.OBLIGATION_UPDATED,
                obligation_id=obligation_id,
                user_id=stored.user_id,
                description="Obligation edited",
                timestamp=now,
                details={"fields": sorted(updates)},
            )
        return stored

    async def _set_flags(
        self,
        obligation_id: UUID,
        now: datetime,
        event_type: AuditEventType,
        description: str,
        **flags: bool,
    ) -> RecurringObligation:
        def change(obligation: RecurringObligation) -> None:
            for field, value in flags.items():
                setattr(obligation, field, value)
            obligation.updated_at = now

        async with self._locks.hold(obligation_id):
            stored = await self._mutate(obligation_id, change)

        if self._audit_logger:
            await self._audit_logger.log_obligation_state(
                event_type=event_type,
                obligation_id=obligation_id,
                user_id=stored.user_id,
                description=description,
                timestamp=now,
            )
        return stored

    async def pause(self, obligation_id: UUID, now: datetime) -> RecurringObligation:
        """Suspend an obligation. next_due_date is left untouched."""
        return await self._set_flags(
            obligation_id, now,
            AuditEventType.OBLIGATION_PAUSED, "Obligation paused",
            is_paused=True,
        )

    async def resume(self, obligation_id: UUID, now: datetime) -> RecurringObligation:
        """
        Un-suspend an obligation.

        If next_due_date already passed it is simply due again; missed
        occurrences are not generated in a batch.
        """
        return await self._set_flags(
            obligation_id, now,
            AuditEventType.OBLIGATION_RESUMED, "Obligation resumed",
            is_paused=False,
        )

    async def retire(self, obligation_id: UUID, now: datetime) -> RecurringObligation:
        """Manually deactivate an obligation. History is kept."""
        return await self._set_flags(
            obligation_id, now,
            AuditEventType.OBLIGATION_DEACTIVATED, "Obligation retired by user",
            is_active=False,
        )

    async def delete_obligation(self, obligation_id: UUID, now: datetime) -> bool:
        """
        Delete an obligation and its history.

        Terminal and explicit. Ledger entries it created stay in the ledger.
        """
        async with self._locks.hold(obligation_id):
            obligation = await self._require(obligation_id)
            deleted = await self._repository.delete(obligation_id)
        self._locks.discard(obligation_id)

        if deleted and self._audit_logger:
            await self._audit_logger.log_obligation_state(
                event_type=AuditEventType.OBLIGATION_DELETED,
                obligation_id=obligation_id,
                user_id=obligation.user_id,
                description=f"Obligation deleted: {obligation.name}",
                timestamp=now,
                details={"executions": len(obligation.execution_history)},
            )
        return deleted

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _build_draft(self, obligation: RecurringObligation, now: datetime) -> LedgerEntryDraft:
        tags = list(obligation.tags)
        if self._settings.recurring_tag not in tags:
            tags.append(self._settings.recurring_tag)
        return LedgerEntryDraft(
            kind=obligation.kind,
            name=obligation.name,
            amount=obligation.amount,
            category=obligation.category,
            entry_date=now.date(),
            status=EntryStatus.COMPLETED,
            description=obligation.description,
            tags=tags,
            payment_method=obligation.payment_method,
            vendor=obligation.vendor,
            customer=obligation.customer,
            recurring_obligation_id=obligation.id,
            metadata={
                **obligation.metadata,
                "due_date": obligation.next_due_date.isoformat(),
            },
        )

    def _advance(self, obligation: RecurringObligation) -> bool:
        """Move next_due_date one step. Returns True if that deactivated it."""
        obligation.next_due_date = calculate_next_due_date(
            obligation.next_due_date,
            obligation.frequency,
            obligation.day_of_month,
        )
        if obligation.end_date is not None and obligation.next_due_date > obligation.end_date:
            obligation.is_active = False
            return True
        return False

    async def _superseded(
        self,
        obligation: RecurringObligation,
        now: datetime,
        operation: str,
        created_entry_id: Optional[str] = None,
    ) -> ProcessResult:
        logger.info(
            "obligation_superseded",
            obligation_id=str(obligation.id),
            operation=operation,
        )
        if self._audit_logger:
            await self._audit_logger.log_concurrency_conflict(
                entity_type="obligation",
                entity_id=obligation.id,
                operation=operation,
                timestamp=now,
            )
        return ProcessResult(
            obligation_id=obligation.id,
            status=ProcessStatus.SUPERSEDED,
            success=False,
            created_entry_id=created_entry_id,
            reason="another worker claimed or advanced this occurrence first",
        )

    async def process(
        self,
        obligation_id: UUID,
        now: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> ProcessResult:
        """
        Materialize the current occurrence of an obligation.

        Args:
            obligation_id: Obligation to process
            now: Evaluation instant
            correlation_id: Ties the audit events to an evaluation pass

        Returns:
            A result describing what happened. Not being due, losing a
            race and ledger failures are all results, not exceptions.

        Raises:
            NotFoundError: Unknown obligation
        """
        async with self._locks.hold(obligation_id):
            obligation = await self._require(obligation_id)

            # Re-check at the instant of execution
            if not is_due(obligation, now):
                return ProcessResult(
                    obligation_id=obligation_id,
                    status=ProcessStatus.SKIPPED,
                    success=False,
                    next_due_date=obligation.next_due_date,
                    reason="not due",
                )

            if self._claim_is_live(obligation, now):
                return await self._superseded(obligation, now, "process")

            due = obligation.next_due_date
            claim_id = uuid4()
            obligation.claim_id = claim_id
            obligation.claimed_due_date = due
            obligation.claimed_at = now
            try:
                claimed = await self._repository.save(obligation)
            except ConcurrencyError:
                return await self._superseded(obligation, now, "claim")

            try:
                entry_id = await self._ledger.create_entry(
                    claimed.user_id,
                    self._build_draft(claimed, now),
                )
            except LedgerError as e:
                return await self._record_failure(
                    obligation_id, claim_id, due, str(e), now, correlation_id,
                )

            outcome: dict[str, bool] = {}

            def finish(fresh: RecurringObligation) -> None:
                if fresh.claim_id != claim_id:
                    raise OccurrenceClaimedError(
                        f"Claim on {due.isoformat()} was taken over"
                    )
                self._release_claim(fresh)
                fresh.record_execution(ExecutionRecord(
                    executed_at=now,
                    outcome=ExecutionOutcome.SUCCESS,
                    due_date=due,
                    created_entry_id=entry_id,
                ))
                fresh.last_processed_date = now
                outcome["deactivated"] = self._advance(fresh)
                fresh.updated_at = now

            try:
                stored = await self._mutate(obligation_id, finish)
            except (OccurrenceClaimedError, ConcurrencyError):
                logger.warning(
                    "obligation_claim_lost",
                    obligation_id=str(obligation_id),
                    entry_id=entry_id,
                    due_date=due.isoformat(),
                )
                return await self._superseded(obligation, now, "process", entry_id)
            deactivated = outcome["deactivated"]

        logger.debug(
            "obligation_processed",
            obligation_id=str(obligation_id),
            entry_id=entry_id,
            next_due_date=stored.next_due_date.isoformat(),
        )
        if self._audit_logger:
            await self._audit_logger.log_obligation_processed(
                obligation_id=obligation_id,
                user_id=stored.user_id,
                entry_id=entry_id,
                due_date=due.isoformat(),
                next_due_date=stored.next_due_date.isoformat(),
                timestamp=now,
                correlation_id=correlation_id,
            )
            if deactivated:
                await self._audit_logger.log_obligation_state(
                    event_type=AuditEventType.OBLIGATION_DEACTIVATED,
                    obligation_id=obligation_id,
                    user_id=stored.user_id,
                    description="Obligation passed its end date",
                    timestamp=now,
                )

        return ProcessResult(
            obligation_id=obligation_id,
            status=ProcessStatus.PROCESSED,
            success=True,
            next_due_date=stored.next_due_date,
            created_entry_id=entry_id,
            deactivated=deactivated,
        )

    async def _record_failure(
        self,
        obligation_id: UUID,
        claim_id: UUID,
        due: date,
        error: str,
        now: datetime,
        correlation_id: Optional[UUID],
    ) -> ProcessResult:
        """
        Release the claim and append a failed record. The schedule stays
        put so the next pass retries.
        """
        def fail(fresh: RecurringObligation) -> None:
            if fresh.claim_id == claim_id:
                self._release_claim(fresh)
            fresh.record_execution(ExecutionRecord(
                executed_at=now,
                outcome=ExecutionOutcome.FAILED,
                due_date=due,
                error=error,
            ))
            fresh.updated_at = now

        try:
            obligation = await self._mutate(obligation_id, fail)
        except ConcurrencyError:
            obligation = await self._require(obligation_id)
            return await self._superseded(obligation, now, "record_failure")

        logger.warning(
            "obligation_process_failed",
            obligation_id=str(obligation_id),
            error=error,
        )
        if self._audit_logger:
            await self._audit_logger.log_obligation_failed(
                obligation_id=obligation_id,
                user_id=obligation.user_id,
                due_date=due.isoformat(),
                error_message=error,
                timestamp=now,
                correlation_id=correlation_id,
            )

        return ProcessResult(
            obligation_id=obligation.id,
            status=ProcessStatus.FAILED,
            success=False,
            next_due_date=due,
            error=error,
        )

    async def skip_occurrence(self, obligation_id: UUID, now: datetime) -> ProcessResult:
        """
        Consume the current occurrence without creating a ledger entry.

        Raises:
            NotFoundError: Unknown obligation
            InvalidStateError: The obligation is retired
        """
        skipped: dict = {}

        def skip(obligation: RecurringObligation) -> None:
            if not obligation.is_active:
                raise InvalidStateError(f"Obligation {obligation_id} is not active")
            if self._claim_is_live(obligation, now):
                raise OccurrenceClaimedError("Occurrence is being processed")
            skipped["due"] = obligation.next_due_date
            obligation.record_execution(ExecutionRecord(
                executed_at=now,
                outcome=ExecutionOutcome.SKIPPED,
                due_date=obligation.next_due_date,
            ))
            skipped["deactivated"] = self._advance(obligation)
            obligation.updated_at = now

        async with self._locks.hold(obligation_id):
            try:
                stored = await self._mutate(obligation_id, skip)
            except (OccurrenceClaimedError, ConcurrencyError):
                return await self._superseded(await self._require(obligation_id), now, "skip")
        due = skipped["due"]
        deactivated = skipped["deactivated"]

        if self._audit_logger:
            await self._audit_logger.log_obligation_state(
                event_type=AuditEventType.OBLIGATION_SKIPPED,
                obligation_id=obligation_id,
                user_id=stored.user_id,
                description=f"Occurrence {due.isoformat()} skipped",
                timestamp=now,
                details={"due_date": due.isoformat()},
            )

        return ProcessResult(
            obligation_id=obligation_id,
            status=ProcessStatus.SKIPPED,
            success=True,
            next_due_date=stored.next_due_date,
            deactivated=deactivated,
            reason="occurrence skipped",
        )

    async def evaluate_due(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[ObligationResult]:
        """
        Run one evaluation pass.

        Args:
            now: Evaluation instant
            user_id: Restrict the pass to one user
            cancel_event: When set, obligations not yet started are
                reported as cancelled and left untouched
            correlation_id: Ties audit events of this pass together

        Returns:
            One result per due obligation. A failure on one obligation
            never stops the others.
        """
        correlation_id = correlation_id or create_correlation_id()
        candidates = await self._repository.list_obligations(user_id=user_id, active_only=True)
        due = [o for o in candidates if is_due(o, now)]

        results: list[ObligationResult] = []
        for obligation in due:
            if cancel_event is not None and cancel_event.is_set():
                result = ProcessResult(
                    obligation_id=obligation.id,
                    status=ProcessStatus.CANCELLED,
                    success=False,
                    next_due_date=obligation.next_due_date,
                    reason="evaluation pass cancelled",
                )
            elif not obligation.auto_process:
                await self._emit(Alert(
                    kind=AlertKind.DUE_OBLIGATION,
                    entity_id=obligation.id,
                    user_id=obligation.user_id,
                    message=f'"{obligation.name}" is due and awaiting confirmation',
                    context={
                        "name": obligation.name,
                        "amount": str(obligation.amount),
                        "kind": obligation.kind.value,
                        "category": obligation.category,
                        "due_date": obligation.next_due_date.isoformat(),
                    },
                    created_at=now,
                ))
                result = ProcessResult(
                    obligation_id=obligation.id,
                    status=ProcessStatus.AWAITING_CONFIRMATION,
                    success=False,
                    next_due_date=obligation.next_due_date,
                    reason="manual confirmation required",
                )
            else:
                result = await self._process_in_pass(obligation, now, correlation_id)

            results.append(ObligationResult(
                **result.model_dump(),
                user_id=obligation.user_id,
                name=obligation.name,
            ))

        logger.info(
            "evaluation_pass_complete",
            correlation_id=str(correlation_id),
            user_id=user_id,
            due=len(due),
            processed=sum(1 for r in results if r.status == ProcessStatus.PROCESSED),
            failed=sum(1 for r in results if r.status == ProcessStatus.FAILED),
        )
        return results

    async def _process_in_pass(
        self,
        obligation: RecurringObligation,
        now: datetime,
        correlation_id: UUID,
    ) -> ProcessResult:
        try:
            return await self.process(obligation.id, now, correlation_id)
        except NotFoundError:
            return ProcessResult(
                obligation_id=obligation.id,
                status=ProcessStatus.SKIPPED,
                success=False,
                reason="deleted during evaluation",
            )
        except StorageError as e:
            logger.error(
                "obligation_storage_failed",
                obligation_id=str(obligation.id),
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="storage",
                    error_message=str(e),
                    details={"obligation_id": str(obligation.id)},
                    correlation_id=correlation_id,
                )
            return ProcessResult(
                obligation_id=obligation.id,
                status=ProcessStatus.FAILED,
                success=False,
                next_due_date=obligation.next_due_date,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Read-side helpers
    # ------------------------------------------------------------------

    async def list_upcoming(
        self,
        user_id: str,
        now: datetime,
        days: Optional[int] = None,
    ) -> list[RecurringObligation]:
        """Active, unpaused obligations with an occurrence between today and today + days."""
        days = days if days is not None else self._settings.upcoming_window_days
        today = now.date()
        horizon = today + timedelta(days=days)
        obligations = await self._repository.list_obligations(user_id=user_id, active_only=True)
        return [
            o for o in obligations
            if not o.is_paused
            and o.next_due_date >= today
            and upcoming_occurrences(o, horizon, limit=1)
        ]

    async def notify_upcoming(self, user_id: str, now: datetime) -> list[Alert]:
        """
        Emit an upcoming-obligation alert for each obligation falling due
        within its own notify_before_days window (due today excluded).
        """
        today = now.date()
        obligations = await self._repository.list_obligations(user_id=user_id, active_only=True)

        alerts = []
        for obligation in obligations:
            if obligation.is_paused or obligation.notify_before_days <= 0:
                continue
            days_until = (obligation.next_due_date - today).days
            if not 0 < days_until <= obligation.notify_before_days:
                continue
            alert = Alert(
                kind=AlertKind.UPCOMING_OBLIGATION,
                entity_id=obligation.id,
                user_id=obligation.user_id,
                message=f'"{obligation.name}" is due in {days_until} day(s)',
                context={
                    "name": obligation.name,
                    "amount": str(obligation.amount),
                    "due_date": obligation.next_due_date.isoformat(),
                    "days_until": days_until,
                },
                created_at=now,
            )
            await self._emit(alert)
            alerts.append(alert)
        return alerts

    async def verify_schedule(self, obligation_id: UUID) -> bool:
        """True when replaying the history reproduces next_due_date."""
        obligation = await self._require(obligation_id)
        replayed = replay_next_due_date(obligation)
        if replayed != obligation.next_due_date:
            logger.warning(
                "obligation_schedule_mismatch",
                obligation_id=str(obligation_id),
                stored=obligation.next_due_date.isoformat(),
                replayed=replayed.isoformat(),
            )
            return False
        return True
