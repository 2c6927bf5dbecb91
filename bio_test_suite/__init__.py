"""
Biology Software Test Suite
Detection, testing and reporting of bioinformatics applications on HPC clusters
"""

from .errors import (
    BioTestSuiteError,
    ConfigurationError,
    DuplicateKeyError,
    SchedulerUnavailableError,
    SubmissionError,
)
from .models import (
    ApplicationSpec,
    DetectionSource,
    ExecutionStrategy,
    ProbeResult,
    SessionReport,
    TestMode,
    TestOutcome,
    TestStatus,
)
from .probe import ProbeEngine
from .registry import ApplicationRegistry, load_registry
from .reporter import Reporter
from .runner import TestRunner

__version__ = "1.0.0"
