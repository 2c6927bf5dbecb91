#!/usr/bin/env python3
"""
Search-path resolution and child process execution
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchContext:
    """Immutable executable search path handed to every probe and child process.

    The process environment is never modified; children get ``environ()``.
    """
    path_entries: Tuple[str, ...]
    base_env: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_environment(cls, prefixes: Iterable[str] = (),
                         environ: Optional[Mapping[str, str]] = None) -> "SearchContext":
        """Build a context from the current environment with extra directories prepended.

        Prefixes that are not existing directories are dropped.
        """
        environ = dict(os.environ if environ is None else environ)
        entries: List[str] = []
        for prefix in prefixes:
            if prefix and Path(prefix).is_dir() and prefix not in entries:
                entries.append(prefix)
                logger.debug(f"Added application path: {prefix}")
        for entry in environ.get("PATH", "").split(os.pathsep):
            if entry and entry not in entries:
                entries.append(entry)
        environ.pop("PATH", None)
        return cls(path_entries=tuple(entries), base_env=tuple(sorted(environ.items())))

    @property
    def path(self) -> str:
        return os.pathsep.join(self.path_entries)

    def which(self, command: str) -> Optional[str]:
        """Resolve a command name to an absolute path, or None"""
        if not self.path_entries:
            return None
        resolved = shutil.which(command, path=self.path)
        return os.path.abspath(resolved) if resolved else None

    def environ(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(self.base_env)
        env["PATH"] = self.path
        if extra:
            env.update(extra)
        return env


@dataclass(frozen=True)
class ProcessResult:
    """Result of a bounded child process run"""
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def first_line(self) -> Optional[str]:
        for text in (self.stdout, self.stderr):
            for line in text.splitlines():
                if line.strip():
                    return line.strip()
        return None

    def describe_failure(self, timeout: Optional[float] = None) -> str:
        if self.timed_out:
            return f"timed out after {timeout:g}s" if timeout else "timed out"
        if self.error:
            return self.error
        return f"exit code {self.returncode}"


class ProcessInvoker:
    """Runs child processes with a bounded timeout, or launches them without waiting"""

    def run(self, command: List[str], timeout: Optional[float] = None,
            env: Optional[Dict[str, str]] = None, cwd: Optional[Path] = None,
            stdin_text: Optional[str] = None) -> ProcessResult:
        try:
            result = subprocess.run(
                command,
                input=stdin_text,
                stdin=None if stdin_text is not None else subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                cwd=str(cwd) if cwd else None,
            )
        except subprocess.TimeoutExpired as e:
            return ProcessResult(
                returncode=None,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
            )
        except OSError as e:
            return ProcessResult(returncode=None, error=f"{type(e).__name__}: {e}")
        return ProcessResult(returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)

    def launch(self, command: List[str], log_path: Path,
               env: Optional[Dict[str, str]] = None, cwd: Optional[Path] = None) -> subprocess.Popen:
        """Start a child that outlives this call; output is appended to log_path.

        Raises OSError when the process cannot be started.
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8", errors="ignore") as f:
            f.write(f"$ {' '.join(command)}\n")
            f.flush()
            return subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=f,
                stderr=subprocess.STDOUT,
                env=env,
                cwd=str(cwd) if cwd else None,
            )


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
