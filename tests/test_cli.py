"""
Tests for CLI functionality
"""
import pytest
import json
from pathlib import Path
from unittest.mock import Mock, patch

from chaos_controller.cli import ChaosControllerCLI, create_parser, main
from chaos_controller.config import ControllerConfig
from chaos_controller.controllers.error_handler import ErrorCategory, ErrorContext, ErrorHandler, ErrorSeverity

EXAMPLES_DIR = Path(__file__).parent.parent / "examples"
PODS = str(EXAMPLES_DIR / "pods.yaml")


def run_main(*argv):
    with patch('sys.argv', ['chaos-controller', *argv]):
        return main()


class TestChaosControllerCLI:
    """Test ChaosControllerCLI helpers"""

    def test_load_config_defaults(self):
        args = create_parser().parse_args(['run'])

        assert ChaosControllerCLI().load_config(args) == ControllerConfig()

    def test_load_config_overrides(self):
        config_file = str(EXAMPLES_DIR / "controller.yaml")
        args = create_parser().parse_args(['run', '--config', config_file, '--local', '--workers', '2',
                                           '--kube-context', 'staging'])

        config = ChaosControllerCLI().load_config(args)

        assert config.local is True
        assert config.workers == 2
        assert config.kube_context == "staging"
        assert config.ignored_namespaces == "^kube-"

    def test_load_manifests(self):
        objects = ChaosControllerCLI().load_manifests([PODS, str(EXAMPLES_DIR / "network-delay.yaml")])

        assert [obj.kind for obj in objects] == ["Pod", "Pod", "Pod", "NetworkChaos"]

    def test_load_no_manifests(self):
        assert ChaosControllerCLI().load_manifests(None) == []


class TestCreateParser:
    """Test argument parsing"""

    def test_run_arguments(self):
        args = create_parser().parse_args(['run', '--local', '-f', 'a.yaml', '-f', 'b.yaml', '--once'])

        assert args.command == 'run'
        assert args.manifest == ['a.yaml', 'b.yaml']
        assert args.once is True
        assert args.timeout == 30.0
        assert args.max_wait is None

    def test_topology_requires_manifest(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(['topology'])

    def test_topology_defaults(self):
        args = create_parser().parse_args(['topology', '-f', 'wf.yaml'])

        assert args.format == 'yaml'
        assert args.max_wait == 5.0
        assert args.name is None


class TestRunCommand:
    """Test the run command"""

    def test_once_with_local_manifests(self, capsys):
        code = run_main('run', '--local', '-f', PODS, '-f', str(EXAMPLES_DIR / "network-delay.yaml"),
                        '--once', '--timeout', '5', '--max-wait', '0')

        out = capsys.readouterr().out
        assert code == 0
        assert "Applied 4 objects" in out
        assert "Reconciled to quiescence in" in out
        assert "NetworkChaos default/web-delay: desired Run, 2/2 records injected" in out

    def test_print_state_lists_experiment_errors(self, capsys, delay_experiment):
        experiment = delay_experiment(name="web-delay")
        controller = Mock()
        controller.repository.list.return_value = []
        controller.store.list.side_effect = lambda kind: [experiment] if kind == "NetworkChaos" else []
        controller.error_handler = ErrorHandler()
        controller.error_handler.handle_error(ErrorContext(
            category=ErrorCategory.SELECTOR_RESOLUTION,
            severity=ErrorSeverity.MEDIUM,
            message="no pods match selector",
            object_key="default/web-delay"
        ))

        ChaosControllerCLI()._print_state(controller)

        out = capsys.readouterr().out
        assert "NetworkChaos default/web-delay: desired Run, 0/0 records injected" in out
        assert "  [medium] no pods match selector" in out

    def test_manifest_requires_local(self, capsys):
        assert run_main('run', '-f', PODS) == 1
        assert "--manifest requires --local" in capsys.readouterr().out

    def test_bad_config(self, tmp_path, capsys):
        config_file = tmp_path / "controller.yaml"
        config_file.write_text("workers: -1\n")

        assert run_main('run', '--local', '--config', str(config_file)) == 1
        assert "Failed to load config file" in capsys.readouterr().out

    @patch('chaos_controller.cli.ChaosControllerManager')
    def test_long_running(self, mock_manager_class):
        controller = Mock()
        mock_manager_class.return_value = controller

        assert run_main('run', '--local') == 0

        controller.start.assert_called_once()
        controller.manager.wait.assert_called_once()
        controller.stop.assert_called_once()

    @patch('chaos_controller.cli.ChaosControllerManager')
    def test_keyboard_interrupt(self, mock_manager_class, capsys):
        controller = Mock()
        controller.manager.wait.side_effect = KeyboardInterrupt
        mock_manager_class.return_value = controller

        assert run_main('run', '--local') == 130
        controller.stop.assert_called_once()
        assert "interrupted" in capsys.readouterr().out


class TestValidateCommand:
    """Test the validate command"""

    def test_valid_examples(self, capsys):
        code = run_main('validate', str(EXAMPLES_DIR / "serial-workflow.yaml"), PODS, '--verbose')

        out = capsys.readouterr().out
        assert code == 0
        assert "[PASS] Workflow/web-then-db" in out
        assert "3/3 documents valid" in out

    def test_invalid_manifest(self, tmp_path, capsys):
        manifest = tmp_path / "bad.yaml"
        manifest.write_text("apiVersion: chaos-mesh.org/v1alpha1\nkind: IOChaos\nmetadata:\n  name: io\n")

        code = run_main('validate', str(manifest))

        out = capsys.readouterr().out
        assert code == 1
        assert "[FAIL] IOChaos/io" in out
        assert "Unknown kind: IOChaos" in out
        assert "0/1 documents valid" in out

    def test_missing_file(self, tmp_path, capsys):
        assert run_main('validate', str(tmp_path / "absent.yaml")) == 1
        assert "Manifest file not found" in capsys.readouterr().out

    def test_bad_yaml(self, tmp_path, capsys):
        manifest = tmp_path / "bad.yaml"
        manifest.write_text("kind: [unclosed\n")

        assert run_main('validate', str(manifest)) == 1
        assert "Invalid YAML syntax" in capsys.readouterr().out


class TestTopologyCommand:
    """Test the topology command"""

    def test_json_topology(self, capsys):
        code = run_main('topology', '-f', PODS, '-f', str(EXAMPLES_DIR / "serial-workflow.yaml"),
                        '--format', 'json', '--max-wait', '0', '--timeout', '5')

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data['workflow']['name'] == "web-then-db"
        types = {node['template']: node['type'] for node in data['nodes']}
        assert types['the-entry'] == "SerialNode"
        assert types['web-delay'] == "ChaosNode"

    def test_no_workflow(self, capsys):
        assert run_main('topology', '-f', PODS) == 1
        assert "no Workflow found" in capsys.readouterr().out

    def test_unknown_workflow_name(self, capsys):
        code = run_main('topology', '-f', str(EXAMPLES_DIR / "serial-workflow.yaml"), '--name', 'other')

        assert code == 1
        assert "workflow other not found" in capsys.readouterr().out


def test_no_command(capsys):
    """Test running without a subcommand prints help"""
    assert run_main() == 1
    assert "No command specified" in capsys.readouterr().out
