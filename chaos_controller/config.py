"""
Controller configuration

Settings are read from a YAML (or JSON) file whose keys match the field
names of ControllerConfig. Unknown keys are reported by ConfigValidator.
"""
import re
import yaml
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union


@dataclass
class ControllerConfig:
    """Runtime settings for the chaos controller manager"""
    # Namespace scoping for target selection
    cluster_scoped: bool = True
    target_namespace: str = "default"
    allowed_namespaces: str = ""  # regex, empty allows all
    ignored_namespaces: str = ""  # regex, empty ignores none

    # Work queue and fan-out
    workers: int = 4
    max_concurrency: int = 8
    resync_period: float = 30.0
    queue_base_delay: float = 0.005
    queue_max_delay: float = 60.0

    # Optimistic-concurrency retry for status writes
    conflict_retry_attempts: int = 5
    conflict_retry_delay: float = 0.01

    # Workflow chaos nodes poll their experiment at this interval
    chaos_node_poll_interval: float = 1.0

    # Cluster access
    local: bool = False
    kube_context: Optional[str] = None
    in_cluster: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> 'ControllerConfig':
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in (data or {}).items() if key in known})


def load_config_file(file_path: Union[str, Path]) -> ControllerConfig:
    """Load and validate a configuration file"""
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML syntax in {file_path}: {e}")

    errors = ConfigValidator.validate_structure(data)
    if errors:
        raise ValueError(f"Invalid config {file_path}: " + "; ".join(errors))
    return ControllerConfig.from_dict(data)


class ConfigValidator:
    """Validator for controller configuration with detailed error reporting"""

    _INT_FIELDS = ('workers', 'max_concurrency', 'conflict_retry_attempts')
    _FLOAT_FIELDS = ('resync_period', 'queue_base_delay', 'queue_max_delay',
                     'conflict_retry_delay', 'chaos_node_poll_interval')
    _BOOL_FIELDS = ('cluster_scoped', 'local', 'in_cluster')
    _REGEX_FIELDS = ('allowed_namespaces', 'ignored_namespaces')

    @staticmethod
    def validate_structure(config_dict: dict) -> list:
        errors = []

        if not isinstance(config_dict, dict):
            return [f"Config must be a mapping, got {type(config_dict).__name__}"]

        known = {f.name for f in fields(ControllerConfig)}
        for key in config_dict:
            if key not in known:
                errors.append(f"Unknown config field: {key}")

        for key in ConfigValidator._INT_FIELDS:
            if key in config_dict:
                value = config_dict[key]
                if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                    errors.append(f"{key} must be a positive integer")

        for key in ConfigValidator._FLOAT_FIELDS:
            if key in config_dict:
                value = config_dict[key]
                if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                    errors.append(f"{key} must be a non-negative number")

        for key in ConfigValidator._BOOL_FIELDS:
            if key in config_dict and not isinstance(config_dict[key], bool):
                errors.append(f"{key} must be a boolean")

        for key in ConfigValidator._REGEX_FIELDS:
            if key in config_dict:
                try:
                    re.compile(config_dict[key] or "")
                except (re.error, TypeError) as e:
                    errors.append(f"{key} is not a valid regular expression: {e}")

        if config_dict.get('cluster_scoped') is False and not config_dict.get('target_namespace', "default"):
            errors.append("target_namespace is required when cluster_scoped is false")

        return errors
