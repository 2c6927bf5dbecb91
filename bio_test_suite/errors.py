"""
Exception types raised by the biology software test suite
"""

from typing import Optional


class BioTestSuiteError(Exception):
    """Base class for all harness errors"""


class ConfigurationError(BioTestSuiteError):
    """Malformed registry entry, bad config file or invalid selection"""


class DuplicateKeyError(ConfigurationError):
    """An application key was registered twice"""

    def __init__(self, key: str):
        super().__init__(f"Application '{key}' is already registered")
        self.key = key


class SubmissionError(BioTestSuiteError):
    """The batch scheduler rejected a job"""

    def __init__(self, message: str, output: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        self.output = output
        self.exit_code = exit_code


class SchedulerUnavailableError(BioTestSuiteError):
    """Scheduler-delegated execution was requested but no scheduler is installed"""
