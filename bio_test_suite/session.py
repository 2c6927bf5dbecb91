#!/usr/bin/env python3
"""
Test session
Results directory, session logging and the end-to-end run:
probe -> test -> (reconcile) -> report
"""

import getpass
import logging
import os
import socket
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import psutil

from .config import HarnessConfig
from .errors import ConfigurationError, SchedulerUnavailableError
from .models import (
    ApplicationSpec,
    ExecutionStrategy,
    HostInfo,
    ProbeResult,
    RenderedSummary,
    SchedulerResources,
    SessionReport,
)
from .probe import ProbeEngine
from .process import ProcessInvoker, SearchContext
from .registry import ApplicationRegistry
from .reporter import Reporter
from .runner import TestRunner
from .scheduler import SchedulerClient, SlurmScheduler, detect_node_type, detect_scheduler

logger = logging.getLogger(__name__)

LOGGER_NAME = "bio_test_suite"
SUMMARY_FILE = "summary.txt"
JSON_SUMMARY_FILE = "summary.json"
DETAILED_LOG_FILE = "detailed_log.txt"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

STRATEGIES = ("local", "slurm", "auto")


class SessionLogger:
    """Routes the package logger to detailed_log.txt and the console for one session"""

    def __init__(self, results_dir: Path, verbose: bool = False, console: bool = True):
        self.results_dir = Path(results_dir)
        self.log_file = self.results_dir / DETAILED_LOG_FILE
        self.verbose = verbose
        self.console = console
        self.file_handler = None
        self.console_handler = None
        self.setup_logging()

    def setup_logging(self):
        """Attach an append-mode file handler and a console handler"""
        detailed_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)-25s | %(message)s'
        )
        simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s'
        )
        level = logging.DEBUG if self.verbose else logging.INFO

        self.file_handler = logging.FileHandler(self.log_file, mode='a')
        self.file_handler.setLevel(logging.DEBUG)
        self.file_handler.setFormatter(detailed_formatter)

        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG)
        self.logger.addHandler(self.file_handler)

        if self.console:
            self.console_handler = logging.StreamHandler(sys.stdout)
            self.console_handler.setLevel(level)
            self.console_handler.setFormatter(simple_formatter)
            self.logger.addHandler(self.console_handler)

        # Prevent duplicate logs
        self.logger.propagate = False

    def cleanup(self):
        """Clean up logging handlers"""
        for handler in [self.file_handler, self.console_handler]:
            if handler:
                self.logger.removeHandler(handler)
                handler.close()


def configure_console_logging(verbose: bool = False) -> None:
    """Console-only logging for commands that do not create a results directory"""
    package_logger = logging.getLogger(LOGGER_NAME)
    if package_logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)-8s | %(message)s'))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)
    package_logger.propagate = False


def create_results_dir(root: Path, prefix: str, now: datetime) -> Path:
    results_dir = Path(root) / f"{prefix}_results_{now.strftime('%Y%m%d_%H%M%S')}"
    results_dir.mkdir(parents=True, exist_ok=True)
    return results_dir


def collect_host_info() -> HostInfo:
    """Hostname, user, CPU count and total memory of the machine running the suite"""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = os.environ.get("USER", "")
    try:
        memory_total = psutil.virtual_memory().total
    except (OSError, RuntimeError) as e:
        logger.debug(f"Could not read memory size: {e}")
        memory_total = None
    return HostInfo(
        hostname=socket.gethostname(),
        user=user,
        cpu_count=psutil.cpu_count(),
        memory_total=memory_total,
    )


@dataclass
class SessionResult:
    """What a finished session hands back to the command line"""
    exit_code: int
    results_dir: Optional[Path] = None
    report: Optional[SessionReport] = None
    summary: Optional[RenderedSummary] = None


class TestSuite:
    """End-to-end orchestration of one harness invocation"""
    __test__ = False

    def __init__(self, config: HarnessConfig, registry: ApplicationRegistry,
                 invoker: Optional[ProcessInvoker] = None,
                 scheduler: Optional[SchedulerClient] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 host: Optional[HostInfo] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.config = config
        self.registry = registry
        self.invoker = invoker or ProcessInvoker()
        self.scheduler = scheduler
        self.environ = dict(environ if environ is not None else os.environ)
        self.clock = clock
        self.host = host
        self.cancel_event = cancel_event or threading.Event()
        self.context = SearchContext.from_environment(config.path_prefixes, self.environ)
        self.reporter = Reporter()

    def resolve_selection(self, apps: Optional[Iterable[str]] = None,
                          categories: Optional[Iterable[str]] = None,
                          suite: Optional[str] = None) -> List[ApplicationSpec]:
        """Explicit keys, categories and a named suite combine; nothing given means all.

        Categories named by the user must exist in the registry. A suite may
        list categories the registry does not carry.
        """
        apps = list(apps or [])
        categories = list(categories or [])
        known_categories = set(self.registry.categories())
        for category in categories:
            if category not in known_categories:
                raise ConfigurationError(
                    f"Unknown category '{category}'. Available: {', '.join(self.registry.categories())}"
                )
        if suite:
            if suite not in self.config.suites:
                raise ConfigurationError(
                    f"Unknown suite '{suite}'. Available: {', '.join(self.config.suites)}"
                )
            categories += self.config.suites[suite]

        if not apps and not categories:
            return self.registry.all()

        selection = self.registry.select(apps)
        for spec in self.registry.by_category(categories):
            if spec not in selection:
                selection.append(spec)
        if not selection:
            raise ConfigurationError("Selection matched no registered applications")
        return selection

    def detect(self, selection: List[ApplicationSpec]) -> Dict[str, ProbeResult]:
        engine = ProbeEngine(self.context, self.invoker, version_timeout=self.config.probe_timeout)
        return engine.probe_all(selection)

    def resolve_strategy(self, choice: str, dry_run: bool = False) -> ExecutionStrategy:
        """Map local/slurm/auto to an execution strategy, attaching a scheduler client if needed"""
        if choice not in STRATEGIES:
            raise ConfigurationError(f"Unknown strategy '{choice}'. Choose from: {', '.join(STRATEGIES)}")
        if choice == "local":
            return ExecutionStrategy.LOCAL_SYNC

        if self.scheduler is None:
            self.scheduler = detect_scheduler(self.context, self.invoker, dry_run=dry_run)
            if self.scheduler is not None:
                version = self.scheduler.version()
                if version:
                    logger.info(f"   {self.scheduler.name.upper()} version: {version}")
        if self.scheduler is None and choice == "slurm":
            if dry_run:
                # A dry run only renders the sbatch call, so sbatch need not exist
                self.scheduler = SlurmScheduler(self.context, self.invoker, dry_run=True)
            else:
                raise SchedulerUnavailableError("SLURM requested but 'sbatch' was not found on the search path")

        if self.scheduler is None:
            logger.info("ℹ️  No job scheduler detected - using direct execution")
            return ExecutionStrategy.LOCAL_SYNC
        logger.info(f"✅ Job scheduler detected: {self.scheduler.name}")
        return ExecutionStrategy.EXTERNAL_SCHEDULER

    def run(self, selection: List[ApplicationSpec], strategy: str = "auto",
            detected_only: bool = False, resources: Optional[SchedulerResources] = None,
            wait: bool = False, reconcile: bool = False, dry_run: bool = False,
            verbose: bool = False, console: bool = True) -> SessionResult:
        """Run a complete session and write its results. Returns the exit code and artifacts.

        The strategy is resolved first; a session that cannot run leaves no
        results directory behind.
        """
        try:
            execution = self.resolve_strategy(strategy, dry_run=dry_run)
        except (ConfigurationError, SchedulerUnavailableError) as e:
            logger.error(f"❌ {e}")
            return SessionResult(exit_code=EXIT_CONFIG)

        started = self.clock()
        try:
            results_dir = create_results_dir(Path(self.config.results_root), self.config.results_prefix, started)
        except OSError as e:
            logger.error(f"❌ Cannot create results directory under {self.config.results_root}: {e}")
            return SessionResult(exit_code=EXIT_FAILURE)

        session_logger = SessionLogger(results_dir, verbose=verbose, console=console)
        try:
            return self._run_session(results_dir, selection, execution, detected_only,
                                     resources, wait, reconcile)
        finally:
            session_logger.cleanup()

    def _run_session(self, results_dir: Path, selection: List[ApplicationSpec], strategy: ExecutionStrategy,
                     detected_only: bool, resources: Optional[SchedulerResources],
                     wait: bool, reconcile: bool) -> SessionResult:
        host = self.host or collect_host_info()

        logger.info("=" * 80)
        logger.info("🚀 BIOLOGY SOFTWARE TEST SUITE")
        logger.info(f"   Date: {self.clock().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info(f"   Host: {host.hostname}")
        logger.info(f"   User: {host.user}")
        logger.info(f"   Working directory: {os.getcwd()}")
        logger.info(f"   Results directory: {results_dir}")
        logger.info(f"   Execution strategy: {strategy.value}")
        if self.config.source:
            logger.info(f"   Configuration: {self.config.source}")
        logger.info("=" * 80)

        logger.info("🔍 SOFTWARE DETECTION PHASE")
        probe_results = self.detect(selection)
        found = [spec for spec in selection if probe_results[spec.key].found]
        missing = [spec for spec in selection if not probe_results[spec.key].found]
        logger.info("📊 DETECTION SUMMARY")
        logger.info(f"   Total applications found: {len(found)} out of {len(selection)}")
        if missing:
            logger.info(f"   Not found: {', '.join(spec.key for spec in missing)}")

        if not found:
            logger.error("❌ CRITICAL ERROR: No biology applications found!")
            logger.error("   Please check:")
            logger.error("   1. Application installation paths")
            logger.error("   2. File permissions")
            logger.error("   3. Module loading requirements")

        if detected_only:
            selection = found

        runner = TestRunner(
            self.context,
            results_dir,
            invoker=self.invoker,
            scheduler=self.scheduler if strategy == ExecutionStrategy.EXTERNAL_SCHEDULER else None,
            resources=resources or self.config.scheduler,
            basic_timeout=self.config.basic_timeout,
            node_type=detect_node_type(self.context, self.invoker, self.environ),
            wait=wait,
            poll_interval=self.config.poll_interval,
            wait_timeout=self.config.wait_timeout,
            cancel_event=self.cancel_event,
            host=host,
            clock=self.clock,
        )

        logger.info("=" * 80)
        logger.info(f"🧪 TEST EXECUTION PHASE ({strategy.value}, {len(selection)} applications)")
        logger.info("=" * 80)
        report = runner.run(selection, probe_results, strategy)

        if wait and strategy == ExecutionStrategy.LOCAL_SYNC:
            runner.wait_for_local(timeout=self.config.wait_timeout)
        if reconcile:
            logger.info("🔍 Reconciling detailed test outcomes...")
            report = runner.reconcile(report)

        summary = self.reporter.render(report)
        try:
            self.reporter.write(summary, results_dir / SUMMARY_FILE)
            self.reporter.write_json(report, summary, results_dir / JSON_SUMMARY_FILE)
        except OSError as e:
            logger.error(f"❌ Cannot write results to {results_dir}: {e}")
            return SessionResult(exit_code=EXIT_FAILURE, results_dir=results_dir, report=report, summary=summary)

        self._log_completion(results_dir, report, summary)
        exit_code = EXIT_OK if found else EXIT_FAILURE
        return SessionResult(exit_code=exit_code, results_dir=results_dir, report=report, summary=summary)

    def _log_completion(self, results_dir: Path, report: SessionReport, summary: RenderedSummary):
        logger.info("=" * 80)
        logger.info("🏁 TEST SUITE COMPLETED")
        logger.info(f"   {self.reporter.counts_line(summary)}")
        logger.info(f"   OVERALL ASSESSMENT: {summary.overall_status}")
        logger.info("📁 RESULTS LOCATION:")
        logger.info(f"   Summary report: {results_dir / SUMMARY_FILE}")
        logger.info(f"   Detailed log: {results_dir / DETAILED_LOG_FILE}")
        logger.info(f"   Results directory: {results_dir}")

        jobs = [entry.outcome.external_job_handle for entry in report.results
                if entry.outcome.external_job_handle]
        if jobs:
            logger.info("📊 MONITORING YOUR JOBS:")
            logger.info(f"   squeue -j {','.join(jobs)}")
        logger.info("=" * 80)
