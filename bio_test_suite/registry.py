#!/usr/bin/env python3
"""
Application registry
Holds the declarative list of applications and loads it from YAML
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

import yaml

from .detailed import ScriptDetailedTest, discover_test_script
from .errors import ConfigurationError, DuplicateKeyError
from .models import ApplicationSpec, SmokeCheck

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_FILE = Path(__file__).resolve().parent / "apps.yaml"


class ApplicationRegistry:
    """Ordered, key-unique collection of ApplicationSpec entries"""

    def __init__(self, specs: Iterable[ApplicationSpec] = ()):
        self._specs: Dict[str, ApplicationSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ApplicationSpec) -> None:
        if not spec.key:
            raise ConfigurationError("Application entry has an empty key")
        if spec.key in self._specs:
            raise DuplicateKeyError(spec.key)
        if not spec.candidate_commands and not spec.candidate_paths:
            raise ConfigurationError(
                f"Application '{spec.key}' has neither candidate commands nor candidate paths"
            )
        self._specs[spec.key] = spec

    def all(self) -> List[ApplicationSpec]:
        # a fresh list per call, so iteration can be restarted
        return list(self._specs.values())

    def by_category(self, categories: Iterable[str]) -> List[ApplicationSpec]:
        wanted = set(categories)
        return [spec for spec in self._specs.values() if spec.category in wanted]

    def get(self, key: str) -> ApplicationSpec:
        try:
            return self._specs[key]
        except KeyError:
            raise ConfigurationError(
                f"Unknown application '{key}'. Registered: {', '.join(self._specs)}"
            ) from None

    def select(self, keys: Iterable[str]) -> List[ApplicationSpec]:
        """Specs for explicit keys, in the order given, without duplicates"""
        selected: List[ApplicationSpec] = []
        for key in keys:
            spec = self.get(key)
            if spec not in selected:
                selected.append(spec)
        return selected

    def categories(self) -> List[str]:
        seen: List[str] = []
        for spec in self._specs.values():
            if spec.category not in seen:
                seen.append(spec.category)
        return seen

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, key: str) -> bool:
        return key in self._specs

    def __iter__(self) -> Iterator[ApplicationSpec]:
        return iter(self.all())


def _string_list(value: Any, field: str, key: str, default: Iterable[str] = ()) -> tuple:
    if value is None:
        return tuple(default)
    if not isinstance(value, list) or any(isinstance(item, (dict, list)) for item in value):
        raise ConfigurationError(f"'{field}' for '{key}' must be a list of strings, got: {value!r}")
    return tuple(str(item) for item in value)


def _detailed_test(detailed_cfg: Any, key: str, scripts_dir: Path) -> Optional[ScriptDetailedTest]:
    if detailed_cfg is None:
        # Convention: <key>_test.sh in the scripts directory is picked up automatically
        found = discover_test_script(key, scripts_dir)
        return ScriptDetailedTest(script=found) if found else None
    if isinstance(detailed_cfg, str):
        return ScriptDetailedTest(script=scripts_dir / detailed_cfg)
    if not isinstance(detailed_cfg, dict) or not detailed_cfg.get("script"):
        raise ConfigurationError(
            f"detailed_test for '{key}' must be a script name or a mapping with 'script', got: {detailed_cfg!r}"
        )
    return ScriptDetailedTest(
        script=scripts_dir / str(detailed_cfg["script"]),
        accepts_mode=bool(detailed_cfg.get("accepts_mode", False)),
    )


def _smoke_check(smoke_cfg: Any, key: str) -> Optional[SmokeCheck]:
    if smoke_cfg is None:
        return None
    if not isinstance(smoke_cfg, dict):
        raise ConfigurationError(f"smoke_check for '{key}' must be a mapping, got: {smoke_cfg!r}")
    if not smoke_cfg.get("expect"):
        raise ConfigurationError(f"smoke_check for '{key}' needs an 'expect' string")
    stdin = smoke_cfg.get("stdin")
    if stdin is not None and not isinstance(stdin, str):
        raise ConfigurationError(f"smoke_check stdin for '{key}' must be a string")
    return SmokeCheck(
        args=_string_list(smoke_cfg.get("args"), "smoke_check.args", key),
        expect=str(smoke_cfg["expect"]),
        stdin=stdin,
    )


def spec_from_dict(entry: Dict[str, Any], scripts_dir: Optional[Path] = None) -> ApplicationSpec:
    """Build an ApplicationSpec from one ``applications:`` entry.

    Relative script names resolve against ``scripts_dir``, the working
    directory when not given.
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Registry entry must be a mapping, got: {entry!r}")
    key = str(entry.get("key") or "").strip()
    if not key:
        raise ConfigurationError(f"Registry entry without a key: {entry!r}")
    scripts_dir = Path(scripts_dir) if scripts_dir else Path.cwd()

    detailed_test = _detailed_test(entry.get("detailed_test"), key, scripts_dir)
    if detailed_test is not None and not detailed_test.available():
        logger.info(f"ℹ️  Detailed test script for {key} not present: {detailed_test.script}")
        detailed_test = None

    resources = entry.get("resources")
    if resources is not None and not isinstance(resources, dict):
        raise ConfigurationError(f"resources for '{key}' must be a mapping, got: {resources!r}")

    return ApplicationSpec(
        key=key,
        display_name=str(entry.get("name") or key),
        category=str(entry.get("category") or "uncategorized"),
        description=str(entry.get("description") or ""),
        candidate_commands=_string_list(entry.get("commands"), "commands", key),
        candidate_paths=_string_list(entry.get("paths"), "paths", key),
        detailed_test=detailed_test,
        version_args=_string_list(entry.get("version_args"), "version_args", key, default=("--version",)),
        smoke_check=_smoke_check(entry.get("smoke_check"), key),
        resources=resources or None,
    )


def load_registry(path: Optional[Path] = None, scripts_dir: Optional[Path] = None) -> ApplicationRegistry:
    """Load the application registry from a YAML file (built-in list by default)"""
    path = Path(path) if path else DEFAULT_REGISTRY_FILE
    scripts_dir = Path(scripts_dir) if scripts_dir else Path.cwd()
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read registry file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in registry file {path}: {e}") from e

    entries = data.get("applications") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(f"Registry file {path} has no 'applications' list")

    registry = ApplicationRegistry()
    for entry in entries:
        registry.register(spec_from_dict(entry, scripts_dir))

    logger.debug(f"Loaded {len(registry)} applications from {path}")
    return registry
