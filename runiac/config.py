"""Deployment configuration, step data structures and runner interfaces."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import yaml

ENV_PREFIX = "RUNIAC"
CONFIG_NAME = "runiac"
VALID_RUNNERS = ("terraform", "arm")

_CONFIG_EXTENSIONS = ("json", "yaml", "yml")

# Keys that can be supplied through RUNIAC_<KEY> environment variables.
_ENV_KEYS = (
    "environment",
    "namespace",
    "project",
    "log_level",
    "dry_run",
    "self_destroy",
    "deployment_ring",
    "primary_region",
    "regional_regions",
    "max_retries",
    "max_test_retries",
    "account_id",
    "runner",
    "step_whitelist",
)

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


class ConfigError(Exception):
    """Raised when the deployment configuration cannot be read or is invalid."""

    def __init__(self, message: str, config: "Config | None" = None, problems: tuple[str, ...] = ()):
        super().__init__(message)
        self.config = config
        self.problems = tuple(problems)


@dataclass
class Account:
    """Details about a cloud account."""

    id: str = ""
    creds_id: str = ""
    csp: str = ""
    account_owner_label: str = ""


@dataclass
class Config:
    """Settings for one deployment run."""

    account_id: str = ""
    target_account_id: str = ""
    regional_regions: list[str] = field(default_factory=list)
    primary_region: str = ""
    dry_run: bool = False
    runner: str = ""
    unique_external_execution_id: str = ""
    deployment_ring: str = ""
    self_destroy: bool = False
    region_group: str = ""
    step_whitelist: list[str] = field(default_factory=list)
    target_all: bool = False
    version: str = ""
    max_retries: int = 0
    max_test_retries: int = 0
    log_level: str = ""
    core_accounts: dict[str, Account] = field(default_factory=dict)
    region_groups: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    namespace: str = ""
    environment: str = ""
    project: str = ""


@dataclass
class Deployment:
    phase: str = ""
    result: str = ""
    result_message: str = ""
    config: Config = field(default_factory=Config)


@dataclass
class DeployMetadata:
    version: str = ""
    region: str = ""
    base_image: str = ""


class RegionDeployType(Enum):
    """Whether a step runs once in the primary region or in every regional region."""

    PRIMARY = 0
    REGIONAL = 1

    def __str__(self) -> str:
        return self.name.lower()


class DeployResult(Enum):
    """Outcome of a step execution."""

    FAIL = 0
    SUCCESS = 1
    UNSTABLE = 2
    SKIPPED = 3
    NA = 4  # not applicable, e.g. no regional resources exist

    def __str__(self) -> str:
        return self.name


@dataclass
class StepTestOutput:
    step_name: str = ""
    stream_output: str = ""
    err: BaseException | None = None


@dataclass
class StepOutput:
    status: DeployResult = DeployResult.FAIL
    region_deploy_type: RegionDeployType = RegionDeployType.PRIMARY
    region: str = ""
    step_name: str = ""
    stream_output: str = ""
    err: BaseException | None = None
    output_variables: dict[str, Any] | None = None


@dataclass
class StepExecution:
    """Everything a runner needs to execute one step in one region."""

    region_deploy_type: RegionDeployType = RegionDeployType.PRIMARY
    region: str = ""
    logger: Any = None
    unique_external_execution_id: str = ""
    region_group_regions: list[str] = field(default_factory=list)
    target_account_id: str = ""
    region_group: str = ""
    primary_region: str = ""
    dir: str = ""
    environment: str = ""
    app_version: str = ""
    account_id: str = ""
    max_retries: int = 0
    max_test_retries: int = 0
    core_accounts: dict[str, Account] = field(default_factory=dict)
    region_groups: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    namespace: str = ""
    common_region: str = ""
    step_name: str = ""
    step_id: str = ""
    deployment_ring: str = ""
    project: str = ""
    track_name: str = ""
    dry_run: bool = False
    self_destroy: bool = False
    default_step_output_variables: dict[str, dict[str, str]] = field(default_factory=dict)
    optional_step_params: dict[str, str] = field(default_factory=dict)
    required_step_params: dict[str, Any] = field(default_factory=dict)


class Stepper(ABC):
    """Runs the phases of a delivery framework step."""

    @abstractmethod
    def pre_execute(self, execution: StepExecution) -> StepExecution:
        """Prepare an execution before it runs."""

    @abstractmethod
    def execute_step(self, execution: StepExecution) -> StepOutput:
        """Deploy the step."""

    @abstractmethod
    def execute_step_tests(self, execution: StepExecution) -> StepTestOutput:
        """Run the step's tests."""

    @abstractmethod
    def execute_step_destroy(self, execution: StepExecution) -> StepOutput:
        """Tear down what the step deployed."""


@dataclass
class Step:
    """A delivery framework step: one unit of a track."""

    id: str = ""
    name: str = ""
    track_name: str = ""
    dir: str = ""
    progression_level: int = 0
    regional_resources_exist: bool = False
    tests_exist: bool = False
    regional_tests_exist: bool = False
    deploy_config: Config = field(default_factory=Config)
    common_input_variables: dict[str, str] = field(default_factory=dict)
    output: StepOutput = field(default_factory=StepOutput)
    test_output: StepTestOutput = field(default_factory=StepTestOutput)
    runner: Stepper | None = None


class RunnerPlugin(ABC):
    """One-time initialisation hook for a runner plugin."""

    @abstractmethod
    def initialize(self, logger: Any) -> None:
        """Perform initialisation; user-facing output goes to ``logger``."""


# --- value decoding -------------------------------------------------------


def _as_str(key: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"cannot decode '{key}' as a string: {value!r}")


def _as_bool(key: str, value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value == "":
            return False
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
    raise ConfigError(f"cannot parse '{key}' as bool: {value!r}")


def _as_int(key: str, value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value == "":
            return 0
        for base in (0, 10):
            try:
                return int(value, base)
            except ValueError:
                continue
    raise ConfigError(f"cannot parse '{key}' as int: {value!r}")


def _as_list(key: str, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split(",") if value else []
    if isinstance(value, (list, tuple)):
        return [_as_str(key, item) for item in value]
    return [_as_str(key, value)]


def _maybe_json(key: str, value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"cannot decode '{key}': {exc}") from exc
    return value


def _as_accounts(key: str, value: Any) -> dict[str, Account]:
    value = _maybe_json(key, value)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"cannot decode '{key}' as a map of accounts: {value!r}")
    accounts = {}
    for name, details in value.items():
        if not isinstance(details, Mapping):
            raise ConfigError(f"cannot decode account '{name}' in '{key}': {details!r}")
        normalised = {str(k).lower().replace("_", ""): v for k, v in details.items()}
        accounts[str(name)] = Account(
            id=_as_str(key, normalised.get("id")),
            creds_id=_as_str(key, normalised.get("credsid")),
            csp=_as_str(key, normalised.get("csp")),
            account_owner_label=_as_str(key, normalised.get("accountownerlabel")),
        )
    return accounts


def _as_region_groups(key: str, value: Any) -> dict[str, dict[str, list[str]]]:
    value = _maybe_json(key, value)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"cannot decode '{key}' as region groups: {value!r}")
    groups: dict[str, dict[str, list[str]]] = {}
    for csp, regions in value.items():
        if not isinstance(regions, Mapping):
            raise ConfigError(f"cannot decode region group '{csp}' in '{key}': {regions!r}")
        groups[str(csp)] = {str(name): _as_list(key, listed) for name, listed in regions.items()}
    return groups


_FIELDS: dict[str, tuple[tuple[str, ...], Callable[[str, Any], Any]]] = {
    "account_id": (("account_id", "target_account_id"), _as_str),
    "regional_regions": (("regional_regions",), _as_list),
    "primary_region": (("primary_region",), _as_str),
    "dry_run": (("dry_run",), _as_bool),
    "runner": (("runner",), _as_str),
    "uniqueexternalexecutionid": (("unique_external_execution_id",), _as_str),
    "deployment_ring": (("deployment_ring",), _as_str),
    "self_destroy": (("self_destroy",), _as_bool),
    "regiongroup": (("region_group",), _as_str),
    "step_whitelist": (("step_whitelist",), _as_list),
    "targetall": (("target_all",), _as_bool),
    "version": (("version",), _as_str),
    "max_retries": (("max_retries",), _as_int),
    "max_test_retries": (("max_test_retries",), _as_int),
    "log_level": (("log_level",), _as_str),
    "core_accounts": (("core_accounts",), _as_accounts),
    "region_groups": (("region_groups",), _as_region_groups),
    "region_grouprs": (("region_groups",), _as_region_groups),
    "namespace": (("namespace",), _as_str),
    "environment": (("environment",), _as_str),
    "project": (("project",), _as_str),
}


def _read_config_file(search_path: str | os.PathLike[str]) -> dict[str, Any]:
    base = Path(search_path)
    for extension in _CONFIG_EXTENSIONS:
        path = base / f"{CONFIG_NAME}.{extension}"
        if not path.is_file():
            continue
        text = path.read_text(encoding="utf-8")
        try:
            data = json.loads(text) if extension == "json" else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"error reading {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise ConfigError(f"error reading {path}: top level must be a mapping")
        return {str(k).lower(): v for k, v in data.items()}
    return {}


def validate_config(config: Config) -> None:
    """Raise ConfigError unless the primary region is set and the runner is known."""
    problems = []
    if config.primary_region == "":
        problems.append(
            "Key: 'Config.primary_region' Error:Field validation for 'primary_region' "
            "failed on the 'required-primary-region' tag"
        )
    if config.runner not in VALID_RUNNERS:
        problems.append(
            "Key: 'Config.runner' Error:Field validation for 'runner' failed on the 'invalid-runner' tag"
        )
    if problems:
        raise ConfigError("\n".join(problems), config=config, problems=tuple(problems))


def get_config(
    environ: Mapping[str, str] | None = None,
    search_path: str | os.PathLike[str] = ".",
) -> Config:
    """Build the deployment config from a runiac config file and RUNIAC_* variables.

    Environment variables take precedence over the file. A missing file is not an
    error; an unreadable one is.
    """
    if environ is None:
        environ = os.environ

    values = _read_config_file(search_path)
    for key in _ENV_KEYS:
        env_value = environ.get(f"{ENV_PREFIX}_{key.upper()}", "")
        if env_value != "":
            values[key] = env_value

    conf = Config(
        max_test_retries=2,
        max_retries=3,
        log_level="info",
        project="runiac",
        target_all=True,
    )
    for key, value in values.items():
        target = _FIELDS.get(key)
        if target is None:
            continue
        attributes, decode = target
        decoded = decode(key, value)
        for attribute in attributes:
            setattr(conf, attribute, decoded)

    validate_config(conf)

    if conf.target_all and conf.step_whitelist:
        conf.target_all = False

    return conf