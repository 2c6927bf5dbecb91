#!/usr/bin/env python3
"""
Data model for the biology software test suite
Application descriptors, probe results, test outcomes and the session report
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DetectionSource(str, Enum):
    SEARCH_PATH = "SEARCH_PATH"
    DIRECT_PATH = "DIRECT_PATH"
    NONE = "NONE"


class TestStatus(str, Enum):
    __test__ = False

    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"


class TestMode(str, Enum):
    __test__ = False

    DETAILED_SUBMITTED = "DETAILED_SUBMITTED"
    DETAILED_DIRECT = "DETAILED_DIRECT"
    BASIC_VERSION_CHECK = "BASIC_VERSION_CHECK"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class ExecutionStrategy(str, Enum):
    LOCAL_SYNC = "LOCAL_SYNC"
    EXTERNAL_SCHEDULER = "EXTERNAL_SCHEDULER"


@dataclass(frozen=True)
class SmokeCheck:
    """Extra functional check run after a passing version check"""
    args: Tuple[str, ...]
    expect: str
    stdin: Optional[str] = None


@dataclass(frozen=True)
class SchedulerResources:
    """Resource request for a batch job"""
    partition: str = "testing"
    nodes: int = 1
    cpus: int = 4
    memory: str = "4G"
    time_limit: str = "01:00:00"
    gres: Optional[str] = None
    account: Optional[str] = None
    qos: Optional[str] = None

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "SchedulerResources":
        """Return a copy with per-application overrides applied"""
        if not overrides:
            return self
        known = {k: v for k, v in overrides.items() if k in self.__dataclass_fields__}
        return replace(self, **known)


@dataclass(frozen=True)
class ApplicationSpec:
    """Static descriptor of an application the suite knows how to check"""
    key: str
    display_name: str
    category: str
    description: str = ""
    candidate_commands: Tuple[str, ...] = ()
    candidate_paths: Tuple[str, ...] = ()
    detailed_test: Optional[Any] = None  # DetailedTest capability, see detailed.py
    version_args: Tuple[str, ...] = ("--version",)
    smoke_check: Optional[SmokeCheck] = None
    resources: Optional[Dict[str, Any]] = field(default=None, hash=False, compare=False)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of the detection probe for one application"""
    found: bool
    detection_source: DetectionSource = DetectionSource.NONE
    resolved_location: Optional[str] = None
    version_string: Optional[str] = None

    @classmethod
    def not_found(cls) -> "ProbeResult":
        return cls(found=False, detection_source=DetectionSource.NONE)


@dataclass(frozen=True)
class TestOutcome:
    """Result of the test phase for one application"""
    __test__ = False

    status: TestStatus
    mode: TestMode
    detail_text: str = ""
    external_job_handle: Optional[str] = None
    log_path: Optional[str] = None


@dataclass(frozen=True)
class ResultEntry:
    spec: ApplicationSpec
    probe: ProbeResult
    outcome: TestOutcome


@dataclass(frozen=True)
class HostInfo:
    """Host metadata captured once when the session starts"""
    hostname: str = ""
    user: str = ""
    cpu_count: Optional[int] = None
    memory_total: Optional[int] = None  # bytes


@dataclass(frozen=True)
class SessionReport:
    """Aggregate of one harness invocation, rows in selection order"""
    started_at: datetime
    ended_at: datetime
    results: Tuple[ResultEntry, ...] = ()
    strategy: ExecutionStrategy = ExecutionStrategy.LOCAL_SYNC
    host: HostInfo = field(default_factory=HostInfo)

    def count(self, status: TestStatus) -> int:
        return sum(1 for entry in self.results if entry.outcome.status == status)

    @property
    def success_count(self) -> int:
        return self.count(TestStatus.PASS)

    @property
    def fail_count(self) -> int:
        return self.count(TestStatus.FAIL)

    @property
    def skip_count(self) -> int:
        return self.count(TestStatus.SKIPPED)

    @property
    def detected_count(self) -> int:
        return sum(1 for entry in self.results if entry.probe.found)


@dataclass(frozen=True)
class RenderedSummary:
    """Rendered summary text plus the aggregate counts it was built from"""
    text: str
    total: int
    success_count: int
    fail_count: int
    skip_count: int
    success_rate: int
    detected_count: int
    category_counts: Tuple[Tuple[str, int], ...]
    overall_status: str
