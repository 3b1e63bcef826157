"""
Generator configuration: the protoc parameter string and an optional YAML
configuration file.

Parameter syntax is comma-separated ``key=value`` pairs::

    targets=go+python,go.split_files=true,python.module_path=gen.ipc

Per-target keys are ``<target>.<option>``. Unknown keys and bad values are
reported as warnings; they never stop generation.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional, Sequence

import yaml

from .diagnostics import DiagnosticSink, Location


class ConfigError(Exception):
    """Raised when a configuration file fails validation."""
    pass


@dataclass(frozen=True)
class TargetConfig:
    """Per-target emitter configuration."""
    package_name: str = ""     # generated package / module / namespace name
    module_path: str = ""      # output directory prefix
    split_files: bool = False  # separate files for types and channel bindings
    escape_suffix: str = "_"   # appended to identifiers that are reserved words
    runtime: str = ""          # transport library import path / header


TARGET_OPTIONS = tuple(f.name for f in fields(TargetConfig))
GLOBAL_KEYS = ("targets", "target", "config", "parallel", "log_level")

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass
class GeneratorParams:
    targets: List[str] = field(default_factory=list)
    target_configs: Dict[str, TargetConfig] = field(default_factory=dict)
    parallel: bool = True
    log_level: Optional[str] = None
    config_file: Optional[str] = None

    def config_for(self, target: str) -> TargetConfig:
        return self.target_configs.get(target, TargetConfig())


def parse_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def _split_targets(value: str) -> List[str]:
    return [t.strip().lower() for t in value.replace(":", "+").split("+") if t.strip()]


def _add_target(params: GeneratorParams, target: str):
    if target not in params.targets:
        params.targets.append(target)


def _set_option(params: GeneratorParams, target: str, key: str, value,
                sink: DiagnosticSink, where: str):
    if key not in TARGET_OPTIONS:
        sink.warning(f"{where}: unknown option {target}.{key} ignored")
        return
    if key == "split_files":
        flag = parse_bool(value)
        if flag is None:
            sink.warning(f"{where}: {target}.split_files expects a boolean, "
                         f"got {value!r}")
            return
        value = flag
    else:
        value = "" if value is None else str(value)
    current = params.config_for(target)
    params.target_configs[target] = replace(current, **{key: value})


# ── Parameter string ─────────────────────────────────────────────────

def parse_parameters(parameter: str, sink: DiagnosticSink) -> GeneratorParams:
    """
    Parse the protoc parameter string.

    A ``config=<path>`` entry loads a YAML file first; every other
    parameter then overrides what the file set.
    """
    params = GeneratorParams()
    pairs = []
    for raw in (parameter or "").split(","):
        raw = raw.strip()
        if not raw:
            continue
        if "=" not in raw:
            sink.warning(f"parameter {raw!r} is not a key=value pair; ignored")
            continue
        key, value = raw.split("=", 1)
        pairs.append((key.strip(), value.strip()))

    for key, value in pairs:
        if key == "config":
            params.config_file = value
            try:
                apply_config_file(params, load_config_file(value), sink, value)
            except ConfigError as e:
                sink.error(str(e), Location(value))

    cli_targets: List[str] = []
    for key, value in pairs:
        if key == "config":
            continue
        if key == "targets":
            cli_targets.extend(_split_targets(value))
        elif key == "target":
            cli_targets.extend(_split_targets(value))
        elif key == "parallel":
            flag = parse_bool(value)
            if flag is None:
                sink.warning(f"parameter parallel expects a boolean, got {value!r}")
            else:
                params.parallel = flag
        elif key == "log_level":
            params.log_level = value
        elif "." in key:
            target, option = key.split(".", 1)
            _set_option(params, target.lower(), option, value, sink, "parameter")
        else:
            sink.warning(f"unknown parameter {key!r} ignored")

    # Targets named on the command line replace the file's list.
    if cli_targets:
        params.targets = []
        for t in cli_targets:
            _add_target(params, t)

    for target in sorted(params.target_configs):
        if params.targets and target not in params.targets:
            sink.warning(f"configuration for target {target!r} given but the "
                         f"target is not requested")
    return params


# ── YAML file ────────────────────────────────────────────────────────

def _require_mapping(data, context: str) -> dict:
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{context}' must be a mapping")
    return data


def load_config_file(path: str) -> dict:
    """Read and parse a YAML configuration file.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.
    """
    try:
        with open(path) as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path!r}: {e.strerror}")
    return parse_config_yaml(text)


def parse_config_yaml(yaml_str: str) -> dict:
    """Parse YAML configuration text into a mapping.

    Raises:
        ConfigError: If the YAML is invalid or its root is not a mapping.
    """
    if not yaml_str or not yaml_str.strip():
        return {}
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}")
    if data is None:
        return {}
    return _require_mapping(data, "root")


def apply_config_file(params: GeneratorParams, data: dict,
                      sink: DiagnosticSink, path: str = "<config>"):
    """Merge a parsed configuration mapping into ``params``.

    The merge is all or nothing: when a section is rejected, ``params``
    and ``sink`` are left as they were.

    Raises:
        ConfigError: If a section has the wrong shape.
    """
    staged = replace(params, targets=list(params.targets),
                     target_configs=dict(params.target_configs))
    notes = DiagnosticSink()
    _merge_config(staged, data, notes, path)
    for f in fields(GeneratorParams):
        setattr(params, f.name, getattr(staged, f.name))
    sink.extend(notes)


def _merge_config(params: GeneratorParams, data: dict,
                  sink: DiagnosticSink, path: str):
    for key in data:
        value = data[key]
        if key == "targets":
            if isinstance(value, str):
                value = _split_targets(value)
            if not isinstance(value, list):
                raise ConfigError("Section 'targets' must be a list of target names")
            for t in value:
                _add_target(params, str(t).strip().lower())
        elif key == "parallel":
            flag = parse_bool(value)
            if flag is None:
                raise ConfigError(f"Field 'parallel' must be a boolean, got {value!r}")
            params.parallel = flag
        elif key == "log_level":
            params.log_level = str(value)
        elif key in GLOBAL_KEYS:
            sink.warning(f"{path}: key {key!r} is only valid as a parameter; ignored")
        else:
            section = _require_mapping(value, str(key))
            for option, option_value in section.items():
                _set_option(params, str(key).lower(), str(option), option_value,
                            sink, path)


def resolve_targets(params: GeneratorParams, registered: Sequence[str]) -> List[str]:
    """Requested targets, or every registered target when none were named."""
    if params.targets:
        return list(params.targets)
    return sorted(registered)
