#!/usr/bin/env python3
"""
Detailed test procedures

A detailed test is an application-specific script run against small example
datasets. The suite only launches it and observes the launch; the script keeps
its own log and exit code.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

MODES = ("local", "headnode", "compute")

SCRIPT_SUFFIX = "_test.sh"


class DetailedTest:
    """Contract for a detailed test: how to run it in a given mode"""

    name = "detailed"

    def command(self, mode: str) -> List[str]:
        raise NotImplementedError

    def available(self) -> bool:
        return True

    def batch_script(self, mode: str, workdir: Path, job_label: str = "", directives: str = "") -> str:
        """Batch wrapper that runs this test on a compute node; directives go right after the shebang"""
        command = shlex.join(self.command(mode))
        return f"""#!/bin/bash
{directives}
echo "=========================================="
echo "{job_label or self.name} detailed test"
echo "Node: $SLURMD_NODENAME"
echo "Job ID: $SLURM_JOB_ID"
echo "Started at: $(date)"
echo "=========================================="

cd {shlex.quote(str(workdir))}

echo {shlex.quote("Running: " + command)}
{command}
rc=$?

echo "=========================================="
echo "Detailed test finished at: $(date) (exit code $rc)"
echo "=========================================="
exit $rc
"""


@dataclass(frozen=True)
class ScriptDetailedTest(DetailedTest):
    """A shell script such as ``iqtree_test.sh``, optionally taking ``--mode``"""
    script: Path
    accepts_mode: bool = False
    interpreter: str = "bash"

    @property
    def name(self) -> str:
        return self.script.name

    def available(self) -> bool:
        return self.script.is_file()

    def command(self, mode: str) -> List[str]:
        if mode not in MODES:
            raise ValueError(f"Unknown test mode: {mode}")
        cmd = [self.interpreter, str(self.script.absolute())]
        if self.accepts_mode:
            cmd += ["--mode", mode]
        return cmd


def discover_test_script(key: str, scripts_dir: Path) -> Optional[Path]:
    """Find ``<key>_test.sh`` in scripts_dir, if present"""
    candidate = Path(scripts_dir) / f"{key}{SCRIPT_SUFFIX}"
    return candidate if candidate.is_file() else None
