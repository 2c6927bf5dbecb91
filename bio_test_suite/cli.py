#!/usr/bin/env python3
"""
Biology Software Test Suite command line
Detects bioinformatics applications on an HPC system and tests them,
locally or through SLURM.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import HarnessConfig
from .errors import BioTestSuiteError, ConfigurationError, SchedulerUnavailableError
from .models import SchedulerResources
from .registry import ApplicationRegistry, load_registry
from .session import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_OK,
    STRATEGIES,
    TestSuite,
    configure_console_logging,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bio-test-suite",
        description="Biology Software Test Suite for HPC clusters",
    )
    parser.add_argument('--config', help='YAML configuration file')
    parser.add_argument('--registry', help='YAML application registry (default: built-in list)')
    parser.add_argument('--scripts-dir', help='Directory holding <app>_test.sh detailed test scripts')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug output on the console')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # List applications command
    list_parser = subparsers.add_parser('list-apps', help='List registered applications')
    list_parser.add_argument('--category', action='append', help='Only this category (repeatable)')

    # Detect command
    detect_parser = subparsers.add_parser('detect', help='Probe applications without testing them')
    _add_selection_args(detect_parser)

    # Run command
    run_parser = subparsers.add_parser('run', help='Detect and test applications')
    _add_selection_args(run_parser)
    run_parser.add_argument('--all', action='store_true', help='All registered applications (default)')
    run_parser.add_argument('--detected-only', action='store_true',
                            help='Leave applications that were not found out of the report')
    run_parser.add_argument('--strategy', choices=STRATEGIES, default='auto',
                            help='Run detailed tests locally, through SLURM, or SLURM when available')
    run_parser.add_argument('--results-root', help='Where the results directory is created')
    run_parser.add_argument('--dry-run', action='store_true', help='Write batch scripts without submitting')
    run_parser.add_argument('--wait', action='store_true', help='Wait for detailed tests to finish')
    run_parser.add_argument('--wait-timeout', type=float, help='Give up waiting after this many seconds')
    run_parser.add_argument('--poll-interval', type=float, help='Seconds between job status checks')
    run_parser.add_argument('--reconcile', action='store_true',
                            help='Update detailed test outcomes from their exit status before reporting')

    resources = run_parser.add_argument_group('SLURM resources')
    resources.add_argument('-p', '--partition', help='Partition name')
    resources.add_argument('-N', '--nodes', type=int, help='Number of nodes')
    resources.add_argument('-c', '--cpus', type=int, help='CPUs per task')
    resources.add_argument('-m', '--memory', help='Memory, e.g. 4G')
    resources.add_argument('-t', '--time', dest='time_limit', help='Time limit, e.g. 01:00:00')
    resources.add_argument('-g', '--gres', help='Generic resources, e.g. gpu:1')
    resources.add_argument('-A', '--account', help='Account to charge')
    resources.add_argument('-q', '--qos', help='Quality of service')
    return parser


def _add_selection_args(parser: argparse.ArgumentParser):
    parser.add_argument('--apps', nargs='+', metavar='KEY', help='Application keys to include')
    parser.add_argument('--category', action='append', help='Include a category (repeatable)')
    parser.add_argument('--suite', help='Named suite, e.g. phylo, genomics or structure')


def resource_overrides(args, defaults: SchedulerResources) -> SchedulerResources:
    overrides = {
        name: getattr(args, name)
        for name in ("partition", "nodes", "cpus", "memory", "time_limit", "gres", "account", "qos")
        if getattr(args, name, None) is not None
    }
    return defaults.merged(overrides)


def list_apps(registry: ApplicationRegistry, categories: Optional[List[str]] = None):
    specs = registry.by_category(categories) if categories else registry.all()
    print(f"{'KEY':<12} {'NAME':<26} {'CATEGORY':<20} DETAILED TEST")
    print("-" * 80)
    for spec in specs:
        detailed = spec.detailed_test.name if spec.detailed_test else "-"
        print(f"{spec.key:<12} {spec.display_name:<26} {spec.category:<20} {detailed}")


def print_detection(selection, probe_results):
    print(f"{'APPLICATION':<20} {'FOUND':<6} {'SOURCE':<12} {'LOCATION':<45} VERSION")
    print("-" * 100)
    for spec in selection:
        probe = probe_results[spec.key]
        print(f"{spec.display_name:<20} {'yes' if probe.found else 'no':<6} "
              f"{probe.detection_source.value:<12} {probe.resolved_location or '-':<45} "
              f"{probe.version_string or '-'}")


def main(argv: Optional[List[str]] = None):
    """Main function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    configure_console_logging(args.verbose)
    try:
        config = HarnessConfig.load(args.config)
        if args.scripts_dir:
            config.scripts_dir = args.scripts_dir
        registry = load_registry(args.registry or config.registry, config.scripts_dir)

        if args.command == 'list-apps':
            list_apps(registry, args.category)
            sys.exit(EXIT_OK)

        if args.command == 'detect':
            suite = TestSuite(config, registry)
            selection = suite.resolve_selection(args.apps, args.category, args.suite)
            probe_results = suite.detect(selection)
            print_detection(selection, probe_results)
            found = sum(1 for result in probe_results.values() if result.found)
            print(f"\n{found} of {len(selection)} applications found")
            sys.exit(EXIT_OK if found else EXIT_FAILURE)

        # run
        if args.results_root:
            config.results_root = args.results_root
        if args.poll_interval is not None:
            config.poll_interval = args.poll_interval
        if args.wait_timeout is not None:
            config.wait_timeout = args.wait_timeout
        config.validate()

        suite = TestSuite(config, registry)
        if args.all and (args.apps or args.category or args.suite):
            raise ConfigurationError("--all cannot be combined with --apps, --category or --suite")
        selection = suite.resolve_selection(args.apps, args.category, args.suite)
        result = suite.run(
            selection,
            strategy=args.strategy,
            detected_only=args.detected_only,
            resources=resource_overrides(args, config.scheduler),
            wait=args.wait,
            reconcile=args.reconcile,
            dry_run=args.dry_run,
            verbose=args.verbose,
            console=False,
        )
        if result.summary is not None:
            print(result.summary.text)
        sys.exit(result.exit_code)

    except (ConfigurationError, SchedulerUnavailableError) as e:
        logger.error(f"❌ {e}")
        sys.exit(EXIT_CONFIG)
    except (BioTestSuiteError, OSError) as e:
        logger.error(f"Command failed: {e}")
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
