"""Run state memory – append-only structured records.

One :class:`RunMemory` lives for the duration of a run.  The healing
loop appends a :class:`CIIteration` after every test run and a
:class:`FixRecord` after every fix attempt; nothing is ever removed or
rewritten.  The report builder reads it at the end.
"""

from __future__ import annotations

from shared.schemas import CIIteration, CIStatus, ClassifiedError, FixRecord, FixStatus


class RunMemory:
    """Append-only accumulator shared by the loop nodes and the reporter.

    Rules:
      • ``record_*`` methods only add, they never clear or overwrite.
      • Records keep the order in which they were produced.
      • ``total_commits`` counts every commit the run made, including the
        results summary commit added after the loop.
    """

    def __init__(self) -> None:
        self._fixes: list[FixRecord] = []
        self._ci_timeline: list[CIIteration] = []
        self._failures: list[ClassifiedError] = []
        self.total_commits = 0

    # ── Read-only views ──────────────────────────────────────────────

    @property
    def fixes(self) -> list[FixRecord]:
        return list(self._fixes)

    @property
    def ci_timeline(self) -> list[CIIteration]:
        return list(self._ci_timeline)

    @property
    def total_failures(self) -> int:
        return len(self._failures)

    @property
    def final_ci_status(self) -> CIStatus:
        """PASSED only when the most recent test run passed."""
        last = self.latest_ci_run()
        return CIStatus.PASSED if last is not None and last.passed else CIStatus.FAILED

    # ── Append methods ───────────────────────────────────────────────

    def record_ci_run(self, iteration: int, passed: bool) -> CIIteration:
        entry = CIIteration(iteration=iteration, passed=passed)
        self._ci_timeline.append(entry)
        return entry

    def record_failures(self, errors: list[ClassifiedError]) -> None:
        self._failures.extend(errors)

    def record_fix(self, record: FixRecord) -> None:
        self._fixes.append(record)
        if record.status is FixStatus.FIXED:
            self.total_commits += 1

    def record_commit(self) -> None:
        """Count a commit that is not tied to a fix record."""
        self.total_commits += 1

    # ── Query methods ────────────────────────────────────────────────

    def latest_ci_run(self) -> CIIteration | None:
        return self._ci_timeline[-1] if self._ci_timeline else None

