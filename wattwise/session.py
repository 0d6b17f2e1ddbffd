"""
Analysis session workflow.

IDLE -> PARSING -> ANALYZING -> COMPLETE, with PARSING/ANALYZING -> ERROR and
a reset from COMPLETE or ERROR back to IDLE. While COMPLETE, ignore toggles
and re-estimations update the result set in place without leaving the state.

One operation runs at a time per session. The result set is an immutable
tuple that is replaced on every change, so readers always see a consistent
snapshot.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Coroutine, Iterable, List, Optional, Sequence, TypeVar

from pydantic import BaseModel

from . import __version__
from .aggregation import BudgetAggregator, ResultSet, merge_updates, toggle_ignored
from .bom_reader import read_bom
from .errors import EmptyInput, EmptyResponse, SessionBusyError, SessionStateError
from .llm_extractor import LLMExtractor
from .models import (
    AnalysisMetadata,
    AnalysisRecord,
    AnalysisStatus,
    BudgetReport,
    RawRow,
)


logger = logging.getLogger(__name__)

BOMParser = Callable[..., List[RawRow]]
T = TypeVar("T")

SELECTED_FAILURE = "Failed to re-estimate selected items."
ALL_FAILURE = "Failed to re-estimate all items."


class SessionSnapshot(BaseModel):
    """Read-only view of a session for API consumers."""
    status: AnalysisStatus
    error_message: Optional[str] = None
    progress_message: Optional[str] = None
    notification: Optional[str] = None
    is_re_estimating: bool = False
    results: List[AnalysisRecord] = []
    report: Optional[BudgetReport] = None
    metadata: Optional[AnalysisMetadata] = None


class AnalysisSession:
    """
    Owns one BOM analysis: its workflow state and its result set.

    Errors from analysis move the session to ERROR with the message kept for
    display. Re-estimation failures leave the COMPLETE result set untouched
    and raise an alert-level ``notification`` instead.
    """

    def __init__(
        self,
        extractor: LLMExtractor,
        parser: BOMParser = read_bom,
        ui_yield_delay: float = 0.5,
    ):
        """
        Args:
            extractor: Batch analyzer used for analysis and re-estimation
            parser: Turns a BOM source into raw rows
            ui_yield_delay: Pause between parsing and analyzing so status
                watchers can observe the ANALYZING state
        """
        self.extractor = extractor
        self.parser = parser
        self.ui_yield_delay = ui_yield_delay

        self.status = AnalysisStatus.IDLE
        self.results: ResultSet = ()
        self.error_message: Optional[str] = None
        self.progress_message: Optional[str] = None
        self.notification: Optional[str] = None
        self.is_re_estimating = False
        self.metadata: Optional[AnalysisMetadata] = None

        self._aggregator = BudgetAggregator()
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._task is not None

    @property
    def report(self) -> BudgetReport:
        return self._aggregator.report(self.results)

    def _set_progress(self, message: Optional[str]) -> None:
        self.progress_message = message

    def _transition(self, status: AnalysisStatus) -> None:
        logger.debug("Session %s -> %s", self.status.value, status.value)
        self.status = status

    def _require(self, *allowed: AnalysisStatus) -> None:
        if self.is_busy:
            raise SessionBusyError("An analysis operation is already in progress")
        if self.status not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise SessionStateError(
                f"Operation requires status {names}, session is {self.status.value}"
            )

    def _fail(self, error: Exception) -> None:
        logger.error("Analysis failed: %s", error)
        self.results = ()
        self.metadata = None
        self.error_message = str(error) or error.__class__.__name__
        self.progress_message = None
        self._transition(AnalysisStatus.ERROR)

    # ------------------------------------------------------------------
    # Task ownership
    # ------------------------------------------------------------------

    async def _own(self, operation: Coroutine[Any, Any, T]) -> T:
        """Run an operation inside the caller's task, marking it as in flight."""
        self._task = asyncio.current_task()
        try:
            return await operation
        except asyncio.CancelledError:
            self._after_cancel()
            raise
        finally:
            self._task = None

    def _launch(self, operation: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run an operation in a task owned by this session."""
        task = asyncio.create_task(operation)
        self._task = task
        task.add_done_callback(self._launched_done)
        return task

    def _launched_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if task.cancelled():
            self._after_cancel()
        elif task.exception() is not None:
            logger.error("Session operation failed: %r", task.exception())

    def _after_cancel(self) -> None:
        if self.status in (AnalysisStatus.PARSING, AnalysisStatus.ANALYZING):
            self._cancelled_analysis()
        else:
            logger.warning("Re-estimation cancelled; keeping existing results")
        self.is_re_estimating = False
        self.progress_message = None

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_file(self, source, filename: Optional[str] = None) -> AnalysisStatus:
        """Parse a BOM file and analyze it. Returns the resulting status."""
        self._require(AnalysisStatus.IDLE)
        self._start_parsing()
        return await self._own(self._parse_and_analyze(source, filename))

    async def analyze_rows(self, rows: Sequence[RawRow]) -> AnalysisStatus:
        """Analyze rows that were parsed elsewhere. Returns the resulting status."""
        self._require(AnalysisStatus.IDLE)
        self._start_parsing()
        return await self._own(self._analyze(list(rows)))

    def start_analysis(self, source, filename: Optional[str] = None) -> asyncio.Task:
        """
        Start parsing and analyzing a BOM file in the background.

        The session owns the returned task, so ``cancel()`` only ever stops
        the analysis and never the caller.

        Raises:
            SessionBusyError: Another operation is in flight
            SessionStateError: The session is not IDLE
        """
        self._require(AnalysisStatus.IDLE)
        self._start_parsing()
        return self._launch(self._parse_and_analyze(source, filename))

    def _start_parsing(self) -> None:
        self.error_message = None
        self.notification = None
        self.progress_message = None
        self._transition(AnalysisStatus.PARSING)

    async def _parse_and_analyze(self, source, filename: Optional[str]) -> AnalysisStatus:
        try:
            rows = await asyncio.to_thread(self.parser, source, filename)
        except Exception as e:
            self._fail(e)
            return self.status
        return await self._analyze(rows)

    async def _analyze(self, rows: List[RawRow]) -> AnalysisStatus:
        if not rows:
            self._fail(EmptyInput("No data found in the file."))
            return self.status

        self._transition(AnalysisStatus.ANALYZING)
        await asyncio.sleep(self.ui_yield_delay)

        start = time.time()
        try:
            records = await self.extractor.analyze_bom(
                rows, on_retry=self._set_progress, on_progress=self._report_progress
            )
            if not records:
                raise EmptyResponse("The model returned no items for this BOM.")
        except Exception as e:
            self._fail(e)
            return self.status

        self.results = tuple(records)
        self.metadata = AnalysisMetadata(
            llm_model=self.extractor.model,
            batch_count=-(-len(rows) // self.extractor.config.batch_size),
            item_count=len(records),
            processing_time_seconds=round(time.time() - start, 2),
            generated_at=datetime.now(),
            generator_version=__version__,
        )
        self.progress_message = None
        self._transition(AnalysisStatus.COMPLETE)
        logger.info("Analysis complete: %d record(s) from %d row(s)", len(records), len(rows))
        return self.status

    def _report_progress(self, message: str) -> None:
        logger.info(message)
        self.progress_message = message

    def _cancelled_analysis(self) -> None:
        logger.warning("Analysis cancelled")
        self.results = ()
        self.metadata = None
        self.progress_message = None
        self._transition(AnalysisStatus.IDLE)

    # ------------------------------------------------------------------
    # Mutations while COMPLETE
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Return to IDLE, dropping results and messages."""
        if self.is_busy:
            raise SessionBusyError("Cannot reset while an operation is in progress")
        self.results = ()
        self.metadata = None
        self.error_message = None
        self.progress_message = None
        self.notification = None
        self.is_re_estimating = False
        self._aggregator.invalidate()
        self._transition(AnalysisStatus.IDLE)

    def toggle_ignore(self, index: int) -> AnalysisRecord:
        """Flip the ignore flag of one record and return the new record."""
        self._require(AnalysisStatus.COMPLETE)
        self.results = toggle_ignored(self.results, index)
        return self.results[index]

    async def re_estimate(self, indices: Iterable[int]) -> bool:
        """
        Re-estimate the selected records and merge them back by index.

        Returns:
            True on success; False when the backend failed, in which case the
            existing results are kept and ``notification`` explains why
        """
        selected = self._select(indices)
        if not selected:
            return True
        self._start_re_estimating()
        return await self._own(self._re_estimate(selected, SELECTED_FAILURE))

    async def re_estimate_all(self) -> bool:
        """Re-estimate every record; positions are preserved."""
        selected = self._select_all()
        self._start_re_estimating()
        return await self._own(self._re_estimate(selected, ALL_FAILURE))

    def start_re_estimate(self, indices: Iterable[int]) -> Optional[asyncio.Task]:
        """
        Start re-estimating the selected records in the background.

        Returns None when the selection is empty.

        Raises:
            IndexError: An index is outside the result set
            SessionBusyError: Another operation is in flight
            SessionStateError: The session is not COMPLETE
        """
        selected = self._select(indices)
        if not selected:
            return None
        self._start_re_estimating()
        return self._launch(self._re_estimate(selected, SELECTED_FAILURE))

    def start_re_estimate_all(self) -> asyncio.Task:
        """Start re-estimating every record in the background."""
        selected = self._select_all()
        self._start_re_estimating()
        return self._launch(self._re_estimate(selected, ALL_FAILURE))

    def _select(self, indices: Iterable[int]) -> List[int]:
        self._require(AnalysisStatus.COMPLETE)
        selected = sorted(set(indices))
        for index in selected:
            if not 0 <= index < len(self.results):
                raise IndexError(f"No record at index {index} (result set has {len(self.results)})")
        return selected

    def _select_all(self) -> List[int]:
        self._require(AnalysisStatus.COMPLETE)
        return list(range(len(self.results)))

    def _start_re_estimating(self) -> None:
        self.is_re_estimating = True
        self.notification = None

    async def _re_estimate(self, selected: List[int], failure_message: str) -> bool:
        snapshot = self.results
        try:
            updates = await self.extractor.re_estimate(
                [snapshot[i] for i in selected],
                on_retry=self._set_progress,
                on_progress=self._report_progress,
            )
            self.results = merge_updates(
                snapshot, ((selected[position], record) for position, record in updates)
            )
            logger.info("Re-estimated %d of %d selected record(s)", len(updates), len(selected))
            return True
        except Exception as e:
            logger.error("Re-estimation failed: %s", e)
            self.notification = f"{failure_message} {e}"
            return False
        finally:
            self.is_re_estimating = False
            self.progress_message = None

    # ------------------------------------------------------------------
    # Cancellation and views
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """Cancel the in-flight operation, if any."""
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        return True

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self.status,
            error_message=self.error_message,
            progress_message=self.progress_message,
            notification=self.notification,
            is_re_estimating=self.is_re_estimating,
            results=list(self.results),
            report=self.report if self.results else None,
            metadata=self.metadata,
        )
