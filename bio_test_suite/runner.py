#!/usr/bin/env python3
"""
Test runner
Turns probe results into one TestOutcome per selected application, either
locally or by delegating detailed tests to the batch scheduler
"""

import logging
import os
import subprocess
import threading
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .errors import ConfigurationError, SchedulerUnavailableError, SubmissionError
from .models import (
    ApplicationSpec,
    ExecutionStrategy,
    HostInfo,
    ProbeResult,
    ResultEntry,
    SchedulerResources,
    SessionReport,
    TestMode,
    TestOutcome,
    TestStatus,
)
from .process import ProcessInvoker, SearchContext
from .scheduler import (
    DEFAULT_POLL_INTERVAL,
    JobState,
    SchedulerClient,
    WaitOutcome,
    explain_submission_error,
    render_directives,
    tail,
)

logger = logging.getLogger(__name__)

DEFAULT_BASIC_TIMEOUT = 30.0


class TestRunner:
    """Runs detailed or basic tests for each selected application, in order"""
    __test__ = False

    def __init__(self, context: SearchContext, results_dir: Path,
                 invoker: Optional[ProcessInvoker] = None,
                 scheduler: Optional[SchedulerClient] = None,
                 resources: Optional[SchedulerResources] = None,
                 basic_timeout: float = DEFAULT_BASIC_TIMEOUT,
                 node_type: str = "head",
                 wait: bool = False,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 wait_timeout: Optional[float] = None,
                 cancel_event: Optional[threading.Event] = None,
                 workdir: Optional[Path] = None,
                 host: Optional[HostInfo] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.context = context
        self.results_dir = Path(results_dir)
        self.invoker = invoker or ProcessInvoker()
        self.scheduler = scheduler
        self.resources = resources or SchedulerResources()
        self.basic_timeout = basic_timeout
        self.node_type = node_type
        self.wait = wait
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout
        self.cancel_event = cancel_event or threading.Event()
        self.workdir = Path(workdir) if workdir else self.results_dir
        self.host = host or HostInfo()
        self.clock = clock
        self._launched: Dict[str, subprocess.Popen] = {}

    def run(self, selection: Sequence[ApplicationSpec], probe_results: Mapping[str, ProbeResult],
            strategy: ExecutionStrategy) -> SessionReport:
        missing = [spec.key for spec in selection if spec.key not in probe_results]
        if missing:
            raise ConfigurationError(f"No probe result for: {', '.join(missing)}")
        if strategy == ExecutionStrategy.EXTERNAL_SCHEDULER and self.scheduler is None:
            raise SchedulerUnavailableError("Scheduler execution requested but no scheduler client is available")

        started_at = self.clock()
        results: List[ResultEntry] = []
        total = len(selection)

        for index, spec in enumerate(selection, start=1):
            logger.info("-" * 80)
            logger.info(f"🧪 TEST {index}/{total}: {spec.display_name}")
            logger.info(f"   {spec.description}")
            probe = probe_results[spec.key]
            outcome = self._run_one(spec, probe, strategy)
            self._log_outcome(spec, outcome)
            results.append(ResultEntry(spec=spec, probe=probe, outcome=outcome))
            logger.info(f"   📊 Progress: {index}/{total} tests completed ({index * 100 // total}%)")

        if self.wait and strategy == ExecutionStrategy.EXTERNAL_SCHEDULER:
            results = self._await_jobs(results)

        return SessionReport(
            started_at=started_at,
            ended_at=self.clock(),
            results=tuple(results),
            strategy=strategy,
            host=self.host,
        )

    def _run_one(self, spec: ApplicationSpec, probe: ProbeResult,
                 strategy: ExecutionStrategy) -> TestOutcome:
        if not probe.found:
            return TestOutcome(
                status=TestStatus.SKIPPED,
                mode=TestMode.NOT_APPLICABLE,
                detail_text="Not found in PATH or expected locations",
            )
        try:
            if spec.detailed_test is not None:
                if strategy == ExecutionStrategy.EXTERNAL_SCHEDULER:
                    return self._submit_detailed(spec)
                return self._launch_detailed(spec)
            return self._basic_check(spec, probe)
        except Exception as e:
            logger.error(f"❌ Unexpected error while testing {spec.display_name}: {e}")
            mode = TestMode.BASIC_VERSION_CHECK
            if spec.detailed_test is not None:
                mode = (TestMode.DETAILED_SUBMITTED if strategy == ExecutionStrategy.EXTERNAL_SCHEDULER
                        else TestMode.DETAILED_DIRECT)
            return TestOutcome(status=TestStatus.FAIL, mode=mode, detail_text=f"Error: {e}")

    def _submit_detailed(self, spec: ApplicationSpec) -> TestOutcome:
        logger.info(f"🚀 Launching detailed {spec.display_name} test via {self.scheduler.name}...")
        resources = self.resources.merged(spec.resources)
        job_name = f"{spec.key}_test"
        script_path = self.results_dir / f"{spec.key}_job.sh"

        try:
            script_path.write_text(spec.detailed_test.batch_script(
                "compute",
                workdir=self.workdir,
                job_label=spec.display_name,
                directives=render_directives(resources, job_name),
            ))
            script_path.chmod(0o755)
        except OSError as e:
            logger.error(f"   ❌ Could not write batch script {script_path}: {e}")
            return TestOutcome(status=TestStatus.FAIL, mode=TestMode.DETAILED_SUBMITTED,
                               detail_text=f"Could not write batch script: {e}")

        try:
            job_id = self.scheduler.submit(script_path, resources, job_name=job_name)
        except SubmissionError as e:
            message = e.output or str(e)
            logger.error(f"   ❌ FAIL: Could not submit {spec.display_name} job: {message}")
            detail = f"SLURM submission error: {message}"
            hint = explain_submission_error(message)
            if hint:
                logger.info(f"   💡 SUGGESTION: {hint}")
                detail += f" (suggestion: {hint})"
            return TestOutcome(status=TestStatus.FAIL, mode=TestMode.DETAILED_SUBMITTED, detail_text=detail)

        if job_id is None:
            return TestOutcome(status=TestStatus.SKIPPED, mode=TestMode.DETAILED_SUBMITTED,
                               detail_text=f"Dry run: batch script written to {script_path}")

        log_path = self.scheduler.output_path(job_id)
        logger.info(f"   ✅ {spec.display_name} detailed test submitted (Job: {job_id})")
        logger.info(f"   Monitor: squeue -j {job_id}")
        if log_path:
            logger.info(f"   Output: tail -f {log_path}")

        return TestOutcome(
            status=TestStatus.PASS,
            mode=TestMode.DETAILED_SUBMITTED,
            detail_text=f"Submitted (Job: {job_id})",
            external_job_handle=job_id,
            log_path=str(log_path) if log_path else None,
        )

    def _await_jobs(self, results: List[ResultEntry]) -> List[ResultEntry]:
        """Wait on every submitted job once all of them are in the queue"""
        updated = []
        for entry in results:
            job_id = entry.outcome.external_job_handle
            if entry.outcome.mode == TestMode.DETAILED_SUBMITTED and job_id:
                if self.cancel_event.is_set():
                    suffix = "; wait cancelled"
                else:
                    suffix = self._await_job(job_id)
                entry = replace(entry, outcome=replace(entry.outcome, detail_text=entry.outcome.detail_text + suffix))
            updated.append(entry)
        return updated

    def _await_job(self, job_id: str) -> str:
        outcome = self.scheduler.wait_for_completion(
            job_id,
            poll_interval=self.poll_interval,
            timeout=self.wait_timeout,
            cancel_event=self.cancel_event,
        )
        if outcome != WaitOutcome.COMPLETED:
            return "; wait timed out" if outcome == WaitOutcome.TIMED_OUT else "; wait cancelled"

        out_path = self.scheduler.output_path(job_id)
        err_path = self.scheduler.error_path(job_id)
        if out_path and out_path.exists():
            logger.info(f"   Job output (last 50 lines):\n{tail(out_path)}")
        if err_path and err_path.exists() and err_path.stat().st_size > 0:
            logger.warning(f"   ⚠️  Job errors:\n{tail(err_path)}")
        return "; job finished"

    def _launch_detailed(self, spec: ApplicationSpec) -> TestOutcome:
        test = spec.detailed_test
        mode = "local" if self.node_type == "compute" else "headnode"
        if getattr(test, "accepts_mode", False) and mode == "headnode":
            logger.warning("   ⚠️  Running on head node - only head node checks will run")
        log_path = self.results_dir / f"{spec.key}_direct_{os.getpid()}.out"

        logger.info(f"   Running {spec.display_name} detailed test directly...")
        try:
            process = self.invoker.launch(test.command(mode), log_path,
                                          env=self.context.environ(), cwd=self.workdir)
        except OSError as e:
            logger.error(f"   ❌ FAIL: Could not start {test.name}: {e}")
            return TestOutcome(status=TestStatus.FAIL, mode=TestMode.DETAILED_DIRECT,
                               detail_text=f"Launch failed: {e}", log_path=str(log_path))

        self._launched[spec.key] = process
        logger.info(f"   Background job started (pid {process.pid}), output in: {log_path}")
        # Recorded at launch; the script's own exit code is only seen by reconcile()
        return TestOutcome(
            status=TestStatus.PASS,
            mode=TestMode.DETAILED_DIRECT,
            detail_text="Running (Direct execution)",
            log_path=str(log_path),
        )

    def _basic_check(self, spec: ApplicationSpec, probe: ProbeResult) -> TestOutcome:
        logger.info(f"   Running basic {spec.display_name} version check...")
        location = probe.resolved_location
        result = self.invoker.run([location, *spec.version_args], timeout=self.basic_timeout,
                                  env=self.context.environ())
        if not result.ok:
            reason = result.describe_failure(self.basic_timeout)
            return TestOutcome(status=TestStatus.FAIL, mode=TestMode.BASIC_VERSION_CHECK,
                               detail_text=f"Version check failed ({reason})")

        detail = "Version check passed"
        if spec.smoke_check is not None:
            check = spec.smoke_check
            smoke = self.invoker.run([location, *check.args], timeout=self.basic_timeout,
                                     env=self.context.environ(), stdin_text=check.stdin)
            if smoke.ok and check.expect in smoke.stdout + smoke.stderr:
                logger.info("   ✅ BONUS: basic computation test passed")
                detail = "Version + computation test passed"
            else:
                logger.warning(f"   ⚠️  WARN: {spec.display_name} found but computation test failed "
                               f"({smoke.describe_failure(self.basic_timeout) if not smoke.ok else 'unexpected output'})")
                detail = "Version only (computation test failed)"
        return TestOutcome(status=TestStatus.PASS, mode=TestMode.BASIC_VERSION_CHECK, detail_text=detail)

    def _log_outcome(self, spec: ApplicationSpec, outcome: TestOutcome) -> None:
        if outcome.status == TestStatus.PASS:
            logger.info(f"   ✅ PASS: {spec.display_name}: {outcome.detail_text}")
        elif outcome.status == TestStatus.FAIL:
            logger.error(f"   ❌ FAIL: {spec.display_name}: {outcome.detail_text}")
        else:
            logger.warning(f"   ⚠️  SKIPPED: {spec.display_name}: {outcome.detail_text}")

    def wait_for_local(self, timeout: Optional[float] = None) -> bool:
        """Block until launched detailed tests exit.

        ``timeout`` bounds the whole wait, not each process. Returns False if
        any test is still running when the wait stops.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        for key, process in self._launched.items():
            if self.cancel_event.is_set():
                return False
            remaining = None
            if deadline is not None:
                remaining = max(0.0, deadline - time.monotonic())
            logger.info(f"⏳ Waiting for {key} detailed test (pid {process.pid})...")
            try:
                process.wait(timeout=remaining)
            except subprocess.TimeoutExpired:
                logger.warning(f"⚠️  {key} detailed test still running after {timeout:g}s")
                return False
            except KeyboardInterrupt:
                self.cancel_event.set()
                logger.warning("🛑 Wait interrupted; detailed tests keep running in the background")
                return False
        return True

    def reconcile(self, report: SessionReport) -> SessionReport:
        """Refresh detailed-test outcomes from the processes and jobs behind them.

        Returns a new report; rows without a live handle are left untouched.
        """
        entries = []
        for entry in report.results:
            outcome = entry.outcome
            if outcome.mode == TestMode.DETAILED_DIRECT and entry.spec.key in self._launched:
                outcome = self._reconcile_local(entry.spec.key, outcome)
            elif outcome.mode == TestMode.DETAILED_SUBMITTED and outcome.external_job_handle \
                    and self.scheduler is not None:
                outcome = self._reconcile_job(outcome)
            entries.append(replace(entry, outcome=outcome))
        return replace(report, results=tuple(entries), ended_at=self.clock())

    def _reconcile_local(self, key: str, outcome: TestOutcome) -> TestOutcome:
        returncode = self._launched[key].poll()
        if returncode is None:
            return replace(outcome, detail_text="Still running (Direct execution)")
        if returncode == 0:
            return replace(outcome, status=TestStatus.PASS, detail_text="Completed (Direct execution)")
        return replace(outcome, status=TestStatus.FAIL,
                       detail_text=f"Detailed test exited with code {returncode}, see {outcome.log_path}")

    def _reconcile_job(self, outcome: TestOutcome) -> TestOutcome:
        job_id = outcome.external_job_handle
        if self.scheduler.status(job_id) == JobState.RUNNING:
            return replace(outcome, detail_text=f"Still queued or running (Job: {job_id})")
        state = self.scheduler.final_state(job_id)
        if state is None:
            return replace(outcome, detail_text=f"Finished, final state unknown (Job: {job_id})")
        if state == "COMPLETED":
            return replace(outcome, status=TestStatus.PASS, detail_text=f"Completed (Job: {job_id})")
        return replace(outcome, status=TestStatus.FAIL, detail_text=f"Job {job_id} ended {state}")
