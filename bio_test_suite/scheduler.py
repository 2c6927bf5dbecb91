#!/usr/bin/env python3
"""
SLURM scheduler client
Submits detailed test jobs, queries their status and optionally waits for them.
The suite never owns the lifecycle of submitted jobs: it does not cancel them.
"""

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .errors import SubmissionError
from .models import SchedulerResources
from .process import ProcessInvoker, SearchContext

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0
COMMAND_TIMEOUT = 60.0

# Known sbatch error fragments and what to try instead
SUBMISSION_HINTS = {
    "Invalid generic resource": "Try without the GRES option (-g), or test other formats such as 'gpu' or 'gpu:tesla:1' with --dry-run",
    "Invalid partition": "Check available partitions with 'sinfo'",
    "Invalid account": "Check your SLURM accounts with 'sacctmgr show assoc user=$USER'",
    "Invalid qos": "Check the QoS names allowed for your account",
    "Requested node configuration is not available": "Reduce CPUs/memory or choose another partition",
    "time limit": "Lower the time limit (-t) to within the partition's maximum",
}


class JobState(str, Enum):
    RUNNING = "RUNNING"
    NOT_FOUND = "NOT_FOUND"


class WaitOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


def explain_submission_error(message: str) -> Optional[str]:
    """Targeted suggestion for a known scheduler error message, if any"""
    lowered = (message or "").lower()
    for fragment, hint in SUBMISSION_HINTS.items():
        if fragment.lower() in lowered:
            return hint
    return None


def render_directives(resources: SchedulerResources, job_name: str) -> str:
    """``#SBATCH`` header lines matching the resources passed to sbatch"""
    lines = [f"#SBATCH {arg}" for arg in resource_args(resources)]
    lines += [
        f"#SBATCH --job-name={job_name}",
        f"#SBATCH --output={job_name}_%j.out",
        f"#SBATCH --error={job_name}_%j.err",
    ]
    return "\n".join(lines) + "\n"


def resource_args(resources: SchedulerResources) -> List[str]:
    args = [
        f"--partition={resources.partition}",
        f"--nodes={resources.nodes}",
        f"--cpus-per-task={resources.cpus}",
        f"--mem={resources.memory}",
        f"--time={resources.time_limit}",
    ]
    # Only add GRES if specified (many clusters don't need it)
    if resources.gres:
        args.append(f"--gres={resources.gres}")
    if resources.account:
        args.append(f"--account={resources.account}")
    if resources.qos:
        args.append(f"--qos={resources.qos}")
    return args


def tail(path: Path, lines: int = 50) -> str:
    try:
        with open(path, 'r', encoding="utf-8", errors="replace") as f:
            return "".join(f.readlines()[-lines:])
    except OSError:
        return ""


class SchedulerClient:
    """Capability interface for a batch scheduler"""

    name = "scheduler"

    def version(self) -> Optional[str]:
        return None

    def submit(self, script_path: Path, resources: SchedulerResources,
               job_name: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def status(self, job_id: str) -> JobState:
        raise NotImplementedError

    def output_path(self, job_id: str) -> Optional[Path]:
        return None

    def error_path(self, job_id: str) -> Optional[Path]:
        return None

    def final_state(self, job_id: str) -> Optional[str]:
        return None

    def wait_for_completion(self, job_id: str, poll_interval: float = DEFAULT_POLL_INTERVAL,
                            timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> WaitOutcome:
        """Poll until the job is no longer listed.

        Bounded by ``timeout`` seconds and interruptible through ``cancel_event``
        or Ctrl-C. Stopping the wait leaves the job running.
        """
        cancel_event = cancel_event or threading.Event()
        deadline = time.monotonic() + timeout if timeout is not None else None

        logger.info(f"⏳ Waiting for job {job_id} to complete...")
        try:
            while self.status(job_id) == JobState.RUNNING:
                if cancel_event.is_set():
                    return self._stopped(job_id, WaitOutcome.CANCELLED)
                pause = poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return self._stopped(job_id, WaitOutcome.TIMED_OUT)
                    pause = min(poll_interval, remaining)
                logger.info(f"   Job {job_id} still running... (checking every {poll_interval:g}s)")
                if cancel_event.wait(pause):
                    return self._stopped(job_id, WaitOutcome.CANCELLED)
        except KeyboardInterrupt:
            # stop every remaining wait in the session, not just this one
            cancel_event.set()
            return self._stopped(job_id, WaitOutcome.CANCELLED)

        logger.info(f"✅ Job {job_id} is no longer queued")
        return WaitOutcome.COMPLETED

    def _stopped(self, job_id: str, outcome: WaitOutcome) -> WaitOutcome:
        reason = "timed out" if outcome == WaitOutcome.TIMED_OUT else "cancelled"
        logger.warning(f"⚠️  Wait for job {job_id} {reason}; the job itself keeps running")
        logger.warning(f"   Monitor: squeue -j {job_id}")
        return outcome


class SlurmScheduler(SchedulerClient):
    """Talks to SLURM through sbatch / squeue / sacct"""

    name = "slurm"

    def __init__(self, context: SearchContext, invoker: Optional[ProcessInvoker] = None,
                 dry_run: bool = False, command_timeout: float = COMMAND_TIMEOUT):
        self.context = context
        self.invoker = invoker or ProcessInvoker()
        self.dry_run = dry_run
        self.command_timeout = command_timeout
        self._jobs: Dict[str, Path] = {}  # job id -> <submit dir>/<job name>

    def version(self) -> Optional[str]:
        result = self._run(["sbatch", "--version"])
        return result.first_line() if result.ok else None

    def submit(self, script_path: Path, resources: SchedulerResources,
               job_name: Optional[str] = None) -> Optional[str]:
        """Submit a batch script. Returns the job id, or None in dry-run mode."""
        script_path = Path(script_path)
        job_name = job_name or script_path.stem
        cmd = [
            "sbatch", "--parsable",
            *resource_args(resources),
            f"--job-name={job_name}",
            f"--output={job_name}_%j.out",
            f"--error={job_name}_%j.err",
            str(script_path),
        ]

        if self.dry_run:
            logger.info("=== DRY RUN - WOULD SUBMIT WITH ===")
            logger.info(" ".join(cmd))
            logger.info("=== END DRY RUN ===")
            return None

        logger.info(f"🚀 Submitting job with: {' '.join(cmd)}")
        result = self._run(cmd, cwd=script_path.parent)
        output = (result.stdout + result.stderr).strip()
        if not result.ok:
            raise SubmissionError(
                f"sbatch failed ({result.describe_failure(self.command_timeout)}): {output}",
                output=output,
                exit_code=result.returncode,
            )

        lines = [line for line in result.stdout.splitlines() if line.strip()]
        # --parsable prints "<jobid>[;<cluster>]"
        job_id = lines[-1].split(";")[0].strip() if lines else ""
        if not job_id:
            raise SubmissionError(f"sbatch returned no job id: {output}", output=output)

        self._jobs[job_id] = script_path.parent / job_name
        return job_id

    def status(self, job_id: str) -> JobState:
        result = self._run(["squeue", "-h", "-j", str(job_id), "-o", "%T"])
        if result.timed_out:
            logger.warning(f"⚠️  squeue timed out for job {job_id}; assuming it is still queued")
            return JobState.RUNNING
        if not result.ok or not result.stdout.strip():
            return JobState.NOT_FOUND
        return JobState.RUNNING

    def output_path(self, job_id: str) -> Optional[Path]:
        stem = self._jobs.get(str(job_id))
        return stem.parent / f"{stem.name}_{job_id}.out" if stem else None

    def error_path(self, job_id: str) -> Optional[Path]:
        stem = self._jobs.get(str(job_id))
        return stem.parent / f"{stem.name}_{job_id}.err" if stem else None

    def final_state(self, job_id: str) -> Optional[str]:
        """Accounting state (COMPLETED, FAILED, ...) via sacct, if available"""
        result = self._run(["sacct", "-j", str(job_id), "-n", "-X", "-P", "-o", "State,ExitCode"])
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            state = line.split("|")[0].strip()
            if state:
                # "CANCELLED by 1234" -> "CANCELLED"
                return state.split()[0]
        return None

    def _run(self, cmd: List[str], cwd: Optional[Path] = None):
        return self.invoker.run(cmd, timeout=self.command_timeout, env=self.context.environ(), cwd=cwd)


def detect_scheduler(context: SearchContext, invoker: Optional[ProcessInvoker] = None,
                     dry_run: bool = False) -> Optional[SlurmScheduler]:
    """Return a SLURM client when sbatch is on the search path"""
    if context.which("sbatch"):
        return SlurmScheduler(context, invoker=invoker, dry_run=dry_run)
    return None


def detect_node_type(context: SearchContext, invoker: Optional[ProcessInvoker] = None,
                     environ: Optional[Mapping[str, str]] = None) -> str:
    """``compute`` when a GPU answers or we are inside a SLURM job, else ``head``"""
    environ = environ if environ is not None else dict(context.base_env)
    nvidia_smi = context.which("nvidia-smi")
    if nvidia_smi:
        invoker = invoker or ProcessInvoker()
        if invoker.run([nvidia_smi], timeout=10, env=context.environ()).ok:
            return "compute"
    if environ.get("SLURM_JOB_ID"):
        return "compute"
    return "head"
