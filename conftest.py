#!/usr/bin/env python3
"""
Shared fixtures and fakes for the test suite
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from bio_test_suite.errors import SubmissionError
from bio_test_suite.models import ApplicationSpec
from bio_test_suite.process import ProcessResult
from bio_test_suite.scheduler import JobState, SchedulerClient


def write_executable(path: Path, body: str, mode: int = 0o755) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(mode)
    return path


@pytest.fixture
def make_executable(tmp_path):
    """Factory for small shell scripts standing in for real binaries"""
    def _make(name: str, body: str = "echo ok", directory: Optional[Path] = None,
              executable: bool = True) -> Path:
        target = Path(directory or tmp_path / "bin") / name
        mode = 0o755 if executable else 0o644
        return write_executable(target, body, mode)
    return _make


def make_spec(key: str, category: str = "genomics", commands=None, paths=(), **kwargs) -> ApplicationSpec:
    return ApplicationSpec(
        key=key,
        display_name=kwargs.pop("display_name", key.upper()),
        category=category,
        candidate_commands=(key,) if commands is None else tuple(commands),
        candidate_paths=tuple(paths),
        **kwargs,
    )


class FakeProcess:
    """Popen stand-in for fire-and-forget launches"""

    def __init__(self, pid: int = 4321, returncode: Optional[int] = None,
                 wait_error: Optional[BaseException] = None):
        self.pid = pid
        self.returncode = returncode
        self.wait_error = wait_error
        self.wait_timeouts: List[Optional[float]] = []

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.wait_timeouts.append(timeout)
        if self.wait_error is not None:
            raise self.wait_error
        return self.returncode


class FakeInvoker:
    """Records every invocation and answers from a table keyed by executable name"""

    def __init__(self, results: Optional[Dict[str, ProcessResult]] = None,
                 launch_error: Optional[OSError] = None, launch_returncode: Optional[int] = None):
        self.results = results or {}
        self.launch_error = launch_error
        self.launch_returncode = launch_returncode
        self.calls: List[List[str]] = []
        self.launches: List[List[str]] = []
        self.stdin: List[Optional[str]] = []

    def run(self, command, timeout=None, env=None, cwd=None, stdin_text=None):
        self.calls.append(list(command))
        self.stdin.append(stdin_text)
        name = os.path.basename(command[0])
        key = " ".join([name, *command[1:]])
        if key in self.results:
            return self.results[key]
        return self.results.get(name, ProcessResult(returncode=0, stdout=f"{name} 1.0\n"))

    def launch(self, command, log_path, env=None, cwd=None):
        self.launches.append(list(command))
        if self.launch_error:
            raise self.launch_error
        return FakeProcess(returncode=self.launch_returncode)


class FakeScheduler(SchedulerClient):
    """In-memory scheduler: scripted job ids, states and accounting"""

    name = "fake"

    def __init__(self, job_id: Optional[str] = "1001", error: Optional[SubmissionError] = None,
                 states: Optional[List[JobState]] = None, final: Optional[str] = None,
                 interrupt: bool = False):
        self.job_id = job_id
        self.error = error
        self.states = list(states or [])
        self.final = final
        self.interrupt = interrupt
        self.submitted: List[Path] = []
        self.status_calls = 0
        self.events: List[str] = []

    def submit(self, script_path, resources, job_name=None):
        self.events.append(f"submit {Path(script_path).name}")
        self.submitted.append(Path(script_path))
        self.resources = resources
        if self.error:
            raise self.error
        return self.job_id

    def status(self, job_id):
        self.status_calls += 1
        self.events.append(f"status {job_id}")
        if self.interrupt:
            # behaves like Ctrl-C pressed while squeue runs
            raise KeyboardInterrupt
        if self.states:
            return self.states.pop(0)
        return JobState.NOT_FOUND

    def final_state(self, job_id):
        return self.final


@pytest.fixture
def fake_invoker():
    return FakeInvoker()
