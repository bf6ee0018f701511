"""Sequential batch execution over a session's work units."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from pokt_migration.classify import chain_error_for
from pokt_migration.errors import (
    BinaryUnavailableError,
    CommandFailedError,
    CommandTimeoutError,
    FallbackIdentityUnavailableError,
    RetriesExhaustedError,
    SessionError,
    error_type_of,
)
from pokt_migration.logs import sanitize_text
from pokt_migration.retry import RetryPolicy, with_retry
from pokt_migration.runner import ProcessRunner
from pokt_migration.schemas import UnitResultRecord
from pokt_migration.sessions import SessionStore, WorkUnit

logger = logging.getLogger(__name__)

SignerSource = Literal["override", "owner", "fallback"]


@dataclass(frozen=True)
class SigningIdentitySpec:
    override: str | None = None
    owner: str | None = None
    fallback: str | None = None
    fallback_available: bool = True


@dataclass(frozen=True)
class ResolvedSigner:
    name: str
    source: SignerSource


def resolve_signer(spec: SigningIdentitySpec) -> ResolvedSigner:
    """Pick the signing identity: explicit override, then session owner, then fallback."""
    if spec.override:
        return ResolvedSigner(name=spec.override, source="override")
    if spec.owner:
        return ResolvedSigner(name=spec.owner, source="owner")
    if spec.fallback and spec.fallback_available:
        return ResolvedSigner(name=spec.fallback, source="fallback")
    if spec.fallback:
        raise FallbackIdentityUnavailableError(
            f"no signer supplied and fallback identity {spec.fallback} is unavailable"
        )
    raise FallbackIdentityUnavailableError("no signing identity available")


UnitOperation = Callable[[WorkUnit, ResolvedSigner], "dict[str, Any] | None"]


@dataclass
class UnitReport:
    index: int
    name: str
    status: str
    attempts: int = 0
    error: str | None = None
    error_type: str | None = None
    output: dict[str, Any] | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
            "output": self.output,
            "skipped": self.skipped,
        }


@dataclass
class BatchReport:
    session_id: str
    signer: ResolvedSigner
    started_at: str
    finished_at: str | None = None
    units: list[UnitReport] = field(default_factory=list)
    cancelled: bool = False
    aborted_reason: str | None = None

    @property
    def successful(self) -> int:
        return sum(1 for unit in self.units if unit.status == "succeeded")

    @property
    def failed(self) -> int:
        return sum(1 for unit in self.units if unit.status == "failed")

    @property
    def pending(self) -> int:
        return sum(1 for unit in self.units if unit.status == "pending")

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "signer": {"name": self.signer.name, "source": self.signer.source},
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "total": len(self.units),
            "successful": self.successful,
            "failed": self.failed,
            "pending": self.pending,
            "cancelled": self.cancelled,
            "aborted_reason": self.aborted_reason,
            "units": [unit.to_dict() for unit in self.units],
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _describe_failure(exc: BaseException) -> tuple[str, str]:
    if isinstance(exc, RetriesExhaustedError):
        return f"{exc}: {sanitize_text(str(exc.last_error))}", error_type_of(exc)
    if isinstance(exc, CommandTimeoutError):
        return sanitize_text(str(exc)), error_type_of(exc)
    if isinstance(exc, CommandFailedError):
        typed = chain_error_for(exc.output)
        if typed is not None:
            return sanitize_text(str(typed)), error_type_of(typed)
        detail = (exc.stderr or exc.stdout).strip()
        message = f"{exc}: {detail}" if detail else str(exc)
        return sanitize_text(message), error_type_of(exc)
    return sanitize_text(str(exc) or exc.__class__.__name__), error_type_of(exc)


class BatchOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        runner: ProcessRunner | None = None,
        *,
        retry_policy: RetryPolicy | None = None,
        inter_transaction_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.runner = runner
        self.retry_policy = retry_policy or RetryPolicy()
        self.inter_transaction_delay = float(inter_transaction_delay)
        self.sleep = sleep
        self.clock = clock

    def _persist(self, session_id: str, report: UnitReport, signer: ResolvedSigner) -> None:
        record = UnitResultRecord(
            index=report.index,
            name=report.name,
            status=report.status,
            attempts=report.attempts,
            signer=signer.name,
            error=report.error,
            error_type=report.error_type,
            output=report.output,
            finished_at=_iso(self.clock()),
        )
        self.store.record_artifact(
            session_id,
            report.index,
            "unit_result",
            json.dumps(record.model_dump(), indent=2, sort_keys=True) + "\n",
        )

    def _run_unit(
        self, unit: WorkUnit, signer: ResolvedSigner, operation: UnitOperation
    ) -> UnitReport:
        retries = 0

        def _count_retry(_attempt: int, _delay: float, _exc: BaseException) -> None:
            nonlocal retries
            retries += 1

        try:
            outcome = with_retry(
                lambda: operation(unit, signer),
                self.retry_policy,
                sleep=self.sleep,
                on_retry=_count_retry,
            )
        except BinaryUnavailableError:
            raise
        except RetriesExhaustedError as exc:
            message, error_type = _describe_failure(exc)
            return UnitReport(
                index=unit.index,
                name=unit.name,
                status="failed",
                attempts=exc.attempts,
                error=message,
                error_type=error_type,
            )
        except Exception as exc:
            message, error_type = _describe_failure(exc)
            logger.debug("unit %s raised %s", unit.name, exc.__class__.__name__)
            return UnitReport(
                index=unit.index,
                name=unit.name,
                status="failed",
                attempts=retries + 1,
                error=message,
                error_type=error_type,
            )
        return UnitReport(
            index=unit.index,
            name=unit.name,
            status="succeeded",
            attempts=outcome.attempts,
            output=outcome.value if isinstance(outcome.value, dict) else None,
        )

    def run_batch(
        self,
        session_id: str,
        signing: SigningIdentitySpec,
        per_unit_operation: UnitOperation,
        *,
        cancel_event: threading.Event | None = None,
        inter_transaction_delay: float | None = None,
        require_binary: bool = True,
        rerun_succeeded: bool = False,
        persist_results: bool = True,
    ) -> BatchReport:
        """Run ``per_unit_operation`` for every unit of the session, in index order.

        Raises before any unit runs when the session is missing or empty, no
        signer can be resolved, or the binary check fails. After that, unit
        failures are recorded in the report and never raised.
        """
        self.store.get_session(session_id)
        units = self.store.list_work_units(session_id)
        if not units:
            raise SessionError(f"session {session_id} has no work units")
        signer = resolve_signer(signing)
        if require_binary:
            if self.runner is None:
                raise BinaryUnavailableError("no process runner configured")
            self.runner.check_binary()

        delay = self.inter_transaction_delay if inter_transaction_delay is None else float(inter_transaction_delay)
        report = BatchReport(session_id=session_id, signer=signer, started_at=_iso(self.clock()))
        logger.info(
            "starting batch for session %s: %s units, signer %s (%s)",
            session_id,
            len(units),
            signer.name,
            signer.source,
        )

        to_run = [unit for unit in units if rerun_succeeded or unit.status != "succeeded"]
        for unit in units:
            if unit not in to_run:
                report.units.append(
                    UnitReport(
                        index=unit.index,
                        name=unit.name,
                        status=unit.status,
                        attempts=unit.attempts,
                        skipped=True,
                    )
                )

        for position, unit in enumerate(to_run):
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                report.units.extend(
                    UnitReport(index=rest.index, name=rest.name, status="pending")
                    for rest in to_run[position:]
                )
                logger.info("batch for session %s cancelled before unit %s", session_id, unit.name)
                break

            logger.info("processing unit %s (%s/%s)", unit.name, position + 1, len(to_run))
            try:
                unit_report = self._run_unit(unit, signer, per_unit_operation)
            except BinaryUnavailableError as exc:
                unit_report = UnitReport(
                    index=unit.index,
                    name=unit.name,
                    status="failed",
                    attempts=1,
                    error=sanitize_text(str(exc)),
                    error_type=error_type_of(exc),
                )
                if persist_results:
                    self._persist(session_id, unit_report, signer)
                report.units.append(unit_report)
                report.aborted_reason = str(exc)
                report.units.extend(
                    UnitReport(index=rest.index, name=rest.name, status="pending")
                    for rest in to_run[position + 1 :]
                )
                logger.error("binary became unavailable; stopping batch %s", session_id)
                break

            if persist_results:
                self._persist(session_id, unit_report, signer)
            report.units.append(unit_report)
            if unit_report.status == "succeeded":
                logger.info("unit %s succeeded after %s attempt(s)", unit.name, unit_report.attempts)
            else:
                logger.warning("unit %s failed: %s", unit.name, unit_report.error)

            if position < len(to_run) - 1 and delay > 0:
                logger.info("waiting %ss before the next transaction", delay)
                self.sleep(delay)

        report.units.sort(key=lambda item: item.index)
        report.finished_at = _iso(self.clock())
        logger.info(
            "batch for session %s finished: %s succeeded, %s failed",
            session_id,
            report.successful,
            report.failed,
        )
        return report
