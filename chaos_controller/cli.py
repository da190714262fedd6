#!/usr/bin/env python3
"""
Command-line interface for the Chaos Controller
Provides commands for running the controller manager, validating manifests,
and rendering workflow topologies from local manifests.
"""
import sys
import argparse
import json
import yaml
import traceback
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional

from .chaos_engine import build_default_registry
from .config import ControllerConfig, load_config_file
from .errors import ChaosControllerError
from .main import ChaosControllerManager
from .manifests import ManifestLoader, ManifestValidator
from .models import KIND_WORKFLOW, Experiment, RecordPhase, Workflow


class ChaosControllerCLI:
    """Command-line interface for the Chaos Controller"""

    def __init__(self):
        self.registry = build_default_registry()
        self.loader = ManifestLoader(self.registry)

    def load_config(self, args) -> ControllerConfig:
        """Config file first, then command-line overrides"""
        config = load_config_file(args.config) if getattr(args, 'config', None) else ControllerConfig()
        if getattr(args, 'local', False):
            config.local = True
        if getattr(args, 'kube_context', None):
            config.kube_context = args.kube_context
        if getattr(args, 'in_cluster', False):
            config.in_cluster = True
        if getattr(args, 'workers', None):
            config.workers = args.workers
        return config

    def load_manifests(self, paths: List[str]) -> List[Any]:
        objects = []
        for path in paths or []:
            objects.extend(self.loader.load_from_file(path))
        return objects

    def run_controller(self, args) -> int:
        """Run the controller manager against the cluster or local manifests"""
        self._print_header("Chaos Controller")

        try:
            config = self.load_config(args)
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: Failed to load config file: {e}")
            print(f"\nConfig file must be YAML (.yaml, .yml) or JSON (.json)")
            print(f"Example: chaos-controller run --config controller.yaml")
            return 1

        if args.manifest and not config.local:
            print("Error: --manifest requires --local (manifests are applied to an in-memory store)")
            return 1

        objects = self.load_manifests(args.manifest)
        controller = ChaosControllerManager(config, registry=self.registry)
        if objects:
            controller.apply_objects(objects)
            print(f"Applied {len(objects)} objects")

        if args.once:
            passes = controller.run_once(timeout=args.timeout, max_wait=args.max_wait)
            print(f"Reconciled to quiescence in {passes} passes\n")
            self._print_state(controller)
            return 0

        controller.start()
        print("Controller manager running, press Ctrl+C to stop")
        try:
            controller.manager.wait()
        finally:
            controller.stop()
        return 0

    def validate_manifests(self, args) -> int:
        """Validate manifest files"""
        failed = False
        validator = ManifestValidator(self.registry)

        for file in args.files:
            self._print_header(f"Validating manifests: {file}")

            path = Path(file)
            if not path.exists():
                print(f"Error: Manifest file not found: {file}")
                failed = True
                continue

            try:
                docs = ManifestLoader.load_documents(path.read_text())
            except ChaosControllerError as e:
                print(f"Error: {e}")
                failed = True
                continue

            report = validator.validate_documents(docs)
            for label, errors in report.items():
                if errors:
                    failed = True
                    print(f"[FAIL] {label}")
                    for error in errors:
                        print(f"    • {error}")
                elif args.verbose:
                    print(f"[PASS] {label}")
            print(f"\n{sum(1 for e in report.values() if not e)}/{len(report)} documents valid")

        return 1 if failed else 0

    def show_topology(self, args) -> int:
        """Run local manifests to quiescence and print one workflow's topology"""
        config = self.load_config(args)
        config.local = True

        objects = self.load_manifests(args.manifest)
        workflows = [obj for obj in objects if obj.kind == KIND_WORKFLOW]
        if not workflows:
            print("Error: no Workflow found in the given manifests")
            return 1

        workflow = self._pick_workflow(workflows, args.name)
        if workflow is None:
            print(f"Error: workflow {args.name} not found in the given manifests")
            return 1

        controller = ChaosControllerManager(config, registry=self.registry)
        controller.apply_objects(objects)
        controller.run_once(timeout=args.timeout, max_wait=args.max_wait)

        detail = controller.repository.get(workflow.meta.namespace, workflow.meta.name)
        data = asdict(detail)
        if args.format == 'json':
            print(json.dumps(data, indent=2))
        else:
            print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        return 0

    @staticmethod
    def _pick_workflow(workflows: List[Workflow], name: Optional[str]) -> Optional[Workflow]:
        if not name:
            return workflows[0]
        for workflow in workflows:
            if workflow.meta.name == name:
                return workflow
        return None

    def _print_header(self, title: str):
        """Print formatted header"""
        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

    def _print_state(self, controller: ChaosControllerManager):
        """Print workflows and experiments held by the store"""
        for summary in controller.repository.list():
            print(f"Workflow {summary.namespace}/{summary.name}: {summary.status}")

        for kind in self.registry.kinds():
            for experiment in controller.store.list(kind):
                self._print_experiment(experiment)
                for error in controller.error_handler.errors_for(str(experiment.key())):
                    print(f"  [{error.severity.value}] {error.message}")

    @staticmethod
    def _print_experiment(experiment: Experiment):
        records = experiment.status.records or []
        injected = sum(1 for record in records if record.phase == RecordPhase.INJECTED)
        desired = experiment.status.desired_phase.value if experiment.status.desired_phase else "-"
        print(f"{experiment.kind} {experiment.key()}: desired {desired}, "
              f"{injected}/{len(records)} records injected")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='chaos-controller',
        description='Chaos Controller - Reconciles chaos experiments and chaos workflows',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run against the current kubeconfig context
  chaos-controller run --config controller.yaml

  # Apply local manifests to an in-memory cluster and reconcile until quiet
  chaos-controller run --local -f examples/pods.yaml -f examples/network-delay.yaml --once

  # Validate manifests
  chaos-controller validate examples/serial-workflow.yaml

  # Render the topology a workflow reaches
  chaos-controller topology -f examples/pods.yaml -f examples/serial-workflow.yaml
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Chaos Controller 0.1.0'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # Run command
    run_parser = subparsers.add_parser(
        'run',
        help='Run the controller manager'
    )
    run_parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration file (YAML or JSON)'
    )
    run_parser.add_argument(
        '--local',
        action='store_true',
        help='Use an in-memory store instead of the cluster'
    )
    run_parser.add_argument(
        '-f', '--manifest',
        action='append',
        metavar='FILE',
        help='Manifest file applied before starting (repeatable, requires --local)'
    )
    run_parser.add_argument(
        '--kube-context',
        type=str,
        help='Kubeconfig context to use'
    )
    run_parser.add_argument(
        '--in-cluster',
        action='store_true',
        help='Use the in-cluster service account'
    )
    run_parser.add_argument(
        '--workers',
        type=int,
        help='Number of worker threads'
    )
    run_parser.add_argument(
        '--once',
        action='store_true',
        help='Reconcile on the calling thread until the queue is quiet, then exit'
    )
    run_parser.add_argument(
        '--timeout',
        type=float,
        default=30.0,
        help='Upper bound in seconds for --once (default: 30)'
    )
    run_parser.add_argument(
        '--max-wait',
        type=float,
        help='With --once, longest delayed requeue to wait for, in seconds (default: all of them)'
    )
    run_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        'validate',
        help='Validate manifest files'
    )
    validate_parser.add_argument(
        'files',
        nargs='+',
        help='Paths to manifest YAML files'
    )
    validate_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    # Topology command
    topology_parser = subparsers.add_parser(
        'topology',
        help='Reconcile local manifests and print a workflow topology'
    )
    topology_parser.add_argument(
        '-f', '--manifest',
        action='append',
        required=True,
        metavar='FILE',
        help='Manifest file (repeatable)'
    )
    topology_parser.add_argument(
        '--name',
        type=str,
        help='Workflow name (default: first workflow found)'
    )
    topology_parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration file (YAML or JSON)'
    )
    topology_parser.add_argument(
        '--timeout',
        type=float,
        default=30.0,
        help='Upper bound in seconds for reconciling (default: 30)'
    )
    topology_parser.add_argument(
        '--max-wait',
        type=float,
        default=5.0,
        help='Longest delayed requeue to wait for, in seconds (default: 5)'
    )
    topology_parser.add_argument(
        '--format',
        choices=['json', 'yaml'],
        default='yaml',
        help='Output format (default: yaml)'
    )
    topology_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    return parser


def main():
    """Main entry point for CLI"""

    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()],
        force=True,
    )

    if not args.command:
        print("Error: No command specified\n")
        parser.print_help()
        print("\nCommon commands:")
        print("  chaos-controller run --config controller.yaml   # Run against the cluster")
        print("  chaos-controller validate <file.yaml>           # Validate manifests")
        return 1

    cli = ChaosControllerCLI()

    try:
        if args.command == 'run':
            return cli.run_controller(args)
        elif args.command == 'validate':
            return cli.validate_manifests(args)
        elif args.command == 'topology':
            return cli.show_topology(args)
    except KeyboardInterrupt:
        print("\n\nChaos controller was interrupted by user")
        return 130
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        if hasattr(args, 'verbose') and args.verbose:
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
