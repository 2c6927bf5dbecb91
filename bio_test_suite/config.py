#!/usr/bin/env python3
"""
Harness configuration
Loaded from YAML; command line flags override individual values
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigurationError
from .models import SchedulerResources

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BIO_TEST_SUITE_CONFIG"
DEFAULT_CONFIG_FILE = "bio_test_suite.yaml"

DEFAULT_PATH_PREFIXES = [
    "/opt/sw/pub/apps",
    "/opt/sw/pub/apps/beast.v2.7.5/bin",
    "/opt/sw/pub/apps/R/bin",
    "/opt/sw/pub/apps/kraken2",
    "/opt/sw/pub/apps/vcftools/bin",
    "/opt/sw/pub/apps/treemix",
]

# Suite name -> categories it covers
DEFAULT_SUITES = {
    "phylo": ["phylogenetics", "population_genetics"],
    "genomics": ["genomics", "microbiome", "statistics"],
    "structure": ["structural_biology"],
}


@dataclass
class HarnessConfig:
    """Settings for one harness invocation"""
    registry: Optional[str] = None
    scripts_dir: Optional[str] = None
    results_root: str = "."
    results_prefix: str = "biology_test"
    path_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_PATH_PREFIXES))
    probe_timeout: float = 5.0
    basic_timeout: float = 30.0
    poll_interval: float = 30.0
    wait_timeout: Optional[float] = None
    scheduler: SchedulerResources = field(default_factory=SchedulerResources)
    suites: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_SUITES.items()})
    source: Optional[str] = None  # file the values came from, if any

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "HarnessConfig":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got: {type(data).__name__}")

        known = {f.name for f in fields(cls)} - {"scheduler", "suites", "source"}
        unknown = set(data) - known - {"scheduler", "suites"}
        if unknown:
            logger.warning(f"⚠️  Ignoring unknown configuration keys: {', '.join(sorted(unknown))}")

        values = {k: v for k, v in data.items() if k in known and v is not None}
        config = cls(**values, source=source)

        scheduler_cfg = data.get("scheduler") or {}
        if not isinstance(scheduler_cfg, dict):
            raise ConfigurationError("'scheduler' must be a mapping of resource defaults")
        config.scheduler = config.scheduler.merged(scheduler_cfg)

        suites_cfg = data.get("suites") or {}
        if not isinstance(suites_cfg, dict):
            raise ConfigurationError("'suites' must map suite names to category lists")
        for name, categories in suites_cfg.items():
            config.suites[str(name)] = [str(c) for c in (categories or [])]

        config.validate()
        return config

    def validate(self) -> None:
        for name in ("probe_timeout", "basic_timeout", "poll_interval"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"'{name}' must be a positive number, got: {value!r}")
        if self.wait_timeout is not None and (not isinstance(self.wait_timeout, (int, float))
                                              or self.wait_timeout <= 0):
            raise ConfigurationError(f"'wait_timeout' must be a positive number, got: {self.wait_timeout!r}")
        if not isinstance(self.path_prefixes, list):
            raise ConfigurationError("'path_prefixes' must be a list of directories")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None,
             environ: Optional[Dict[str, str]] = None) -> "HarnessConfig":
        """Load configuration from ``path``, ``$BIO_TEST_SUITE_CONFIG`` or ./bio_test_suite.yaml"""
        environ = environ if environ is not None else os.environ
        explicit = path or environ.get(CONFIG_ENV_VAR)
        if explicit:
            config_file = Path(explicit)
            if not config_file.is_file():
                raise ConfigurationError(f"Configuration file not found: {config_file}")
        else:
            config_file = Path(DEFAULT_CONFIG_FILE)
            if not config_file.is_file():
                return cls()

        try:
            with open(config_file, 'r') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {config_file}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file {config_file}: {e}") from e

        logger.debug(f"Loaded configuration from {config_file}")
        return cls.from_dict(data, source=str(config_file))
