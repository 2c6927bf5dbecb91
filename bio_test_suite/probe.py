#!/usr/bin/env python3
"""
Probe engine
Decides whether an application is installed and reachable, independent of
whether its functional tests pass
"""

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional

from .models import ApplicationSpec, DetectionSource, ProbeResult
from .process import ProcessInvoker, SearchContext

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0


class ProbeEngine:
    """Stateless detector: search path first, then known install locations"""

    def __init__(self, context: SearchContext, invoker: Optional[ProcessInvoker] = None,
                 version_timeout: float = DEFAULT_PROBE_TIMEOUT):
        self.context = context
        self.invoker = invoker or ProcessInvoker()
        self.version_timeout = version_timeout

    def probe(self, spec: ApplicationSpec) -> ProbeResult:
        """Detect one application. Never raises; failures become a not-found result."""
        try:
            return self._probe(spec)
        except Exception as e:
            logger.error(f"❌ Probe for {spec.display_name} failed unexpectedly: {e}")
            return ProbeResult.not_found()

    def probe_all(self, specs: Iterable[ApplicationSpec]) -> Dict[str, ProbeResult]:
        return {spec.key: self.probe(spec) for spec in specs}

    def _probe(self, spec: ApplicationSpec) -> ProbeResult:
        logger.info(f"  🔍 Searching for {spec.display_name} executable...")

        # First match wins
        for command in spec.candidate_commands:
            location = self.context.which(command)
            if location:
                logger.info(f"    ✅ PASS: {spec.display_name} found at: {location}")
                return self._found(spec, DetectionSource.SEARCH_PATH, location)

        if spec.candidate_commands:
            logger.info(f"    ❌ FAIL: {spec.display_name} not found in PATH "
                        f"(tried {', '.join(spec.candidate_commands)})")

        for path in spec.candidate_paths:
            logger.info(f"  🔍 Checking direct path for {spec.display_name}: {path}")
            candidate = Path(path)
            if candidate.is_file() and os.access(candidate, os.X_OK):
                logger.info(f"    ✅ PASS: {spec.display_name} executable found and is executable")
                return self._found(spec, DetectionSource.DIRECT_PATH, str(candidate.absolute()))
            if candidate.exists():
                logger.warning(f"    ⚠️  WARN: {path} exists but is not an executable file")
            else:
                logger.info(f"    ❌ FAIL: {path} does not exist")

        return ProbeResult.not_found()

    def _found(self, spec: ApplicationSpec, source: DetectionSource, location: str) -> ProbeResult:
        version = self._version(spec, location)
        if version:
            logger.info(f"    🔧 Version: {version}")
        return ProbeResult(
            found=True,
            detection_source=source,
            resolved_location=location,
            version_string=version,
        )

    def _version(self, spec: ApplicationSpec, location: str) -> Optional[str]:
        """Best-effort version string; never a detection gate"""
        if not spec.version_args:
            return None
        try:
            result = self.invoker.run(
                [location, *spec.version_args],
                timeout=self.version_timeout,
                env=self.context.environ(),
            )
        except Exception as e:
            logger.warning(f"    ⚠️  Version query for {spec.display_name} failed: {e}")
            return None
        if result.timed_out:
            logger.warning(f"    ⚠️  Version query for {spec.display_name} timed out "
                           f"after {self.version_timeout:g}s")
            return None
        if result.error:
            logger.debug(f"Version query for {spec.display_name} failed: {result.error}")
            return None
        # Some tools print their banner on stderr or exit non-zero for --version
        return result.first_line()
