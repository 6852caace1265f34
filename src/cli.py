#!/usr/bin/env python3
"""CLI entry point for conductor.

Usage:
    conductor validate -P <plugin> [-M <manifest>]
    conductor plan -P <plugin> -M <manifest> [--json-output]
    conductor bootstrap -P <plugin> -M <manifest> -E <env> [--dry-run] [--state-file FILE]
    conductor run <command> -P <plugin> -E <env> [--component NAME] [--no-converge]

-P accepts a path to a topology.yaml (or its directory), or a plugin name
looked up under the configured plugins_dir (highest version wins).
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path

from bootstrap.executor import BootstrapExecutor, InventoryBootstrapWorker
from bootstrap.plan import BootstrapPlan
from config import ConfigError, DriverConfig, load_config
from errors import ConductorError, ConvergenceFailed, PluginLoadError
from inventory import HttpInventoryClient
from job import Job
from manifest import ProvisionManifest
from plugin import Plugin
from plugin_loader import find_plugins, latest, load_plugin

VERBS = {
    'validate': 'Validate a topology and optionally a provision manifest',
    'plan': 'Show the bootstrap phases for a manifest',
    'bootstrap': 'Bootstrap nodes phase by phase',
    'run': 'Invoke a plugin or component command on an environment',
}

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _common_parser(verb: str) -> argparse.ArgumentParser:
    """Build argument parser with options shared by all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'conductor {verb}',
        description=VERBS[verb],
    )
    parser.add_argument(
        '--plugin', '-P',
        required=True,
        help='Topology file/directory, or plugin name under plugins_dir',
    )
    parser.add_argument(
        '--config', '-C',
        type=Path,
        help='Config directory (default: $CONDUCTOR_CONFIG, ~/.conductor, /etc/conductor)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _resolve_plugin(value: str, config: DriverConfig) -> Plugin:
    """Load a plugin from a path, or by name from the plugins directory.

    Raises:
        PluginLoadError: If neither a path nor a known plugin name matches
    """
    path = Path(value).expanduser()
    if path.exists():
        return load_plugin(path)

    if config.plugins_dir is None:
        raise PluginLoadError(f"No topology at '{value}' and no plugins_dir configured")

    found = latest(find_plugins(config.plugins_dir), value)
    if found is None:
        raise PluginLoadError(f"No plugin named '{value}' under {config.plugins_dir}")
    return found


def _emit_json(verb: str, success: bool, payload: dict, duration: float = 0.0) -> None:
    """Emit structured JSON output."""
    output = {
        'verb': verb,
        'success': success,
        'duration_seconds': round(duration, 2),
    }
    output.update(payload)
    print(json.dumps(output, indent=2, default=str))


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def validate_main(argv: list) -> int:
    """Handle 'validate' verb."""
    parser = _common_parser('validate')
    parser.add_argument('--manifest', '-M', help='Provision manifest JSON file to check')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = load_config(args.config)
        plugin = _resolve_plugin(args.plugin, config)
        if args.manifest:
            ProvisionManifest.from_file(args.manifest).validate(plugin)
    except (ConductorError, ConfigError) as e:
        if args.json_output:
            _emit_json('validate', False, {'error': str(e)})
            return 1
        return _fail(str(e))

    if args.json_output:
        _emit_json('validate', True, {'plugin': plugin.to_dict()})
    else:
        print(f"{plugin}: valid")
        if args.manifest:
            print(f"{args.manifest}: valid for {plugin.name}")
    return 0


def plan_main(argv: list) -> int:
    """Handle 'plan' verb."""
    parser = _common_parser('plan')
    parser.add_argument('--manifest', '-M', required=True, help='Provision manifest JSON file')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = load_config(args.config)
        plugin = _resolve_plugin(args.plugin, config)
        plan = BootstrapPlan.build(plugin, ProvisionManifest.from_file(args.manifest))
    except (ConductorError, ConfigError) as e:
        return _fail(str(e))

    if args.json_output:
        phases = [
            {
                'index': phase.index,
                'tasks': [
                    {'task': task.id, 'nodes': [n.key for n in task.nodes]}
                    for task in phase.tasks
                ],
            }
            for phase in plan.phases
        ]
        _emit_json('plan', True, {'plugin': plugin.id, 'phases': phases})
    else:
        for line in plan.describe():
            print(line)
    return 0


def bootstrap_main(argv: list) -> int:
    """Handle 'bootstrap' verb."""
    parser = _common_parser('bootstrap')
    parser.add_argument('--manifest', '-M', required=True, help='Provision manifest JSON file')
    parser.add_argument('--environment', '-E', required=True, help='Target environment')
    parser.add_argument('--dry-run', action='store_true', help='Preview phases without executing')
    parser.add_argument('--state-file', type=Path, help='Write execution state JSON to this file')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = load_config(args.config)
        plugin = _resolve_plugin(args.plugin, config)
        plan = BootstrapPlan.build(plugin, ProvisionManifest.from_file(args.manifest))
    except (ConductorError, ConfigError) as e:
        return _fail(str(e))

    inventory = HttpInventoryClient(config.inventory)
    executor = BootstrapExecutor(
        plan=plan,
        worker=InventoryBootstrapWorker(args.environment, inventory),
        environment=args.environment,
        settings=config.bootstrap,
        dry_run=args.dry_run,
    )

    logger.info(f"Bootstrapping {plugin} in environment '{args.environment}'")
    job = Job('bootstrap')
    start = time.time()
    try:
        success, state = executor.run(job)
    except KeyboardInterrupt:
        job.cancel()
        return _fail("interrupted")
    duration = time.time() - start

    if args.state_file:
        state.save(args.state_file)
    if args.json_output:
        _emit_json('bootstrap', success, state.to_dict(), duration)

    return 0 if success else 1


def run_main(argv: list) -> int:
    """Handle 'run' verb."""
    parser = _common_parser('run')
    parser.add_argument('command', help='Command name')
    parser.add_argument('--environment', '-E', required=True, help='Target environment')
    parser.add_argument('--component', help='Invoke a component command instead of a plugin command')
    parser.add_argument(
        '--no-converge',
        action='store_true',
        help='Skip convergence unless an action stages toggled attributes',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    job = Job('command')
    start = time.time()
    try:
        config = load_config(args.config)
        plugin = _resolve_plugin(args.plugin, config)
        owner = plugin.require_component(args.component) if args.component else plugin
        command = owner.require_command(args.command)
        command.invoke(
            job,
            args.environment,
            inventory=HttpInventoryClient(config.inventory),
            run_convergence=not args.no_converge,
            settings=config.convergence,
        )
    except ConvergenceFailed as e:
        if args.json_output:
            results = {name: asdict(r) for name, r in e.report.results.items()}
            _emit_json('run', False, {'error': str(e), 'nodes': results}, time.time() - start)
            return 1
        return _fail(str(e))
    except (ConductorError, ConfigError) as e:
        if args.json_output:
            _emit_json('run', False, {'error': str(e)}, time.time() - start)
            return 1
        return _fail(str(e))

    if args.json_output:
        _emit_json('run', True, {'job': job.snapshot()}, time.time() - start)
    return 0


HANDLERS = {
    'validate': validate_main,
    'plan': plan_main,
    'bootstrap': bootstrap_main,
    'run': run_main,
}


def print_usage() -> None:
    print("Usage: conductor <verb> [options]")
    print("")
    print("Verbs:")
    for verb, description in VERBS.items():
        print(f"  {verb:<10} {description}")
    print("")
    print("Run 'conductor <verb> --help' for verb options.")


def main(argv: list = None) -> int:
    """CLI entry point: dispatch to the verb handler."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0 if argv else 1

    verb, rest = argv[0], argv[1:]
    handler = HANDLERS.get(verb)
    if handler is None:
        print(f"Unknown verb: {verb}", file=sys.stderr)
        print_usage()
        return 1
    return handler(rest)


if __name__ == '__main__':
    sys.exit(main())
