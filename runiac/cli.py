"""Command line interface that builds the project container and runs a deployment in it."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

_log = logging.getLogger(__name__)

DEFAULT_CONTAINER = "docker.io/runiac/deploy:latest-alpine-full"
DEFAULT_DOCKERFILE = ".runiac/Dockerfile"
DEFAULT_CONTAINER_ENGINE = "docker"
DEFAULT_RUNNER = "terraform"
CONFIG_FILE = "runiac.yml"

# filled in by release builds
VERSION = ""
COMMIT = ""
DATE = ""

BASE_CONTAINER = ""

DOCKER_IGNORE = """# do not edit --- autogenerated by runiac --- do not edit
.git
.runiac
.runiac/
"""

DOCKERFILE_TEMPLATE = """# do not edit --- autogenerated by runiac --- do not edit
# syntax = docker/dockerfile:experimental

ARG RUNIAC_CONTAINER="docker.io/runiac/deploy:latest-alpine-full"

FROM $RUNIAC_CONTAINER

WORKDIR /app

COPY . .

RUN mkdir -p $HOME/.terraform.d/plugin-cache
RUN mkdir -p /runiac/tfstate

COPY entrypoint.sh entrypoint.sh
RUN chmod +x entrypoint.sh


ENTRYPOINT ["bash", "-c", "./entrypoint.sh"]
"""

_ROOT_HELP = """Runiac is a friendly runner for infrastructure as code

A friendly, portable infrastructure as code runner.

Usage:
  runiac [command]

Available Commands:
  deploy      Deploy configurations
  version     Print the version number of runiac
"""

_PASSTHROUGH_PREFIXES = ("TF_VAR_", "ARM_", "RUNIAC_", "AWS_")

_FILE_CONFIG_KEYS = ("project", "container", "container_engine", "dockerfile")


@dataclass
class DeployOptions:
    """Options of the deploy command."""

    app_version: str = ""
    environment: str = ""
    primary_regions: list[str] = field(default_factory=list)
    regional_regions: list[str] = field(default_factory=list)
    dry_run: bool = False
    self_destroy: bool = False
    account: str = ""
    log_level: str = ""
    interactive: bool = False
    container: str = DEFAULT_CONTAINER
    namespace: str = ""
    deployment_ring: str = ""
    local: bool = False
    runner: str = DEFAULT_RUNNER
    pull_request: str = ""
    step_whitelist: list[str] = field(default_factory=list)
    dockerfile: str = DEFAULT_DOCKERFILE
    container_engine: str = DEFAULT_CONTAINER_ENGINE
    test: bool = False


def sanitize_machine_name(name: str) -> str:
    """Trim surrounding whitespace and replace every non-alphanumeric character with '_'."""
    return re.sub(r"[^a-zA-Z0-9]", "_", name.strip())


def get_machine_name(environ: Mapping[str, str] | None = None) -> str:
    """Return a sanitized name for the current user.

    Uses USER, then USERNAME, then the output of ``whoami``. Raises OSError or
    subprocess.CalledProcessError when ``whoami`` cannot be run.
    """
    environ = os.environ if environ is None else environ
    for variable in ("USER", "USERNAME"):
        username = environ.get(variable, "")
        if username:
            return sanitize_machine_name(username)
    result = subprocess.run(["whoami"], stdout=subprocess.PIPE, check=True, text=True)
    return sanitize_machine_name(result.stdout)


def get_build_arguments(container: str) -> list[str]:
    """Return the container build arguments, ending with the build context."""
    args: list[str] = []
    if container:
        args += ["--build-arg", f"RUNIAC_CONTAINER={container}"]
    # the build context must come last
    args.append(".")
    return args


def append_env_if_set(args: list[str], name: str, value: str) -> list[str]:
    """Return ``args`` with ``-e RUNIAC_<name>=<value>`` added when ``value`` is not empty."""
    if not value:
        return list(args)
    return [*args, "-e", f"RUNIAC_{name}={value}"]


def init_action(directory: str | os.PathLike[str] = ".", base_container: str = BASE_CONTAINER) -> Path:
    """Write the generated Dockerfile and .dockerignore into ``<directory>/.runiac``.

    Returns the Dockerfile path. Raises OSError when a file cannot be written.
    """
    runiac_dir = Path(directory) / ".runiac"
    _log.debug("Creating .runiac directory")
    try:
        runiac_dir.mkdir(mode=0o755, exist_ok=True)
    except OSError as err:
        _log.debug("Could not create %s: %s", runiac_dir, err)

    dockerfile = runiac_dir / "Dockerfile"
    _log.debug("Writing .runiac/Dockerfile")
    dockerfile.write_text(DOCKERFILE_TEMPLATE.replace("${BASE_CONTAINER}", base_container))

    _log.debug("Writing .runiac/.dockerignore")
    (runiac_dir / ".dockerignore").write_text(DOCKER_IGNORE)
    return dockerfile


def _split_list(value: str) -> list[str]:
    return [item for item in value.split(",")] if value else []


def _deploy_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="runiac deploy",
        description="This will execute the deploy action for each step.",
    )
    parser.add_argument("-v", "--version", dest="app_version", default="", help="Version of the iac code")
    parser.add_argument("-e", "--environment", default="", help="Targeted environment")
    parser.add_argument(
        "-a", "--account", default="",
        help="Targeted Cloud Account (ie. azure subscription, gcp project or aws account)",
    )
    parser.add_argument("-p", "--primary-regions", dest="primary_regions", action="append", help="Primary regions")
    parser.add_argument(
        "-r", "--regional-regions", dest="regional_regions", action="append",
        help="Concurrently execute the ./regional directory across these regions",
    )
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Dry Run")
    parser.add_argument("--self-destroy", dest="self_destroy", action="store_true", help="Teardown after running deploy")
    parser.add_argument("--log-level", dest="log_level", default="", help="Log level")
    parser.add_argument("--interactive", action="store_true", help="Run the container in interactive mode")
    parser.add_argument("-c", "--container", default=None, help="The runiac deploy container to execute in.")
    parser.add_argument("-d", "--deployment-ring", dest="deployment_ring", default="", help="The deployment ring to configure")
    parser.add_argument(
        "--local", action="store_true",
        help="Pre-configure settings to create an isolated configuration specific to the executing machine",
    )
    parser.add_argument("--runner", default=DEFAULT_RUNNER, help="The deployment tool to use for deploying infrastructure")
    parser.add_argument(
        "-s", "--steps", dest="step_whitelist", action="extend", type=_split_list,
        help="Only run the specified steps ({trackName}/{stepName}, comma separated).",
    )
    parser.add_argument(
        "--pull-request", dest="pull_request", default="",
        help="Pre-configure settings to create an isolated configuration specific to a pull request",
    )
    parser.add_argument(
        "-f", "--dockerfile", default=None,
        help=f"The dockerfile runiac builds to execute the deploy in, defaults to '{DEFAULT_DOCKERFILE}'",
    )
    parser.add_argument(
        "--container-engine", dest="container_engine", default=None,
        help="Container engine (ie. podman or docker)",
    )
    parser.add_argument("--test", action="store_true", help=argparse.SUPPRESS)
    return parser


def parse_deploy_options(argv: list[str] | None, file_config: Mapping[str, Any] | None = None) -> DeployOptions:
    """Parse deploy arguments; container, container engine and dockerfile fall back to ``file_config``."""
    file_config = file_config or {}
    parsed = _deploy_parser().parse_args(list(argv or []))

    def choose(cli_value: str | None, key: str, default: str) -> str:
        # a value given on the command line always takes precedence
        if cli_value is not None:
            return cli_value
        configured = file_config.get(key)
        return str(configured) if configured not in (None, "") else default

    return DeployOptions(
        app_version=parsed.app_version,
        environment=parsed.environment,
        primary_regions=parsed.primary_regions or [],
        regional_regions=parsed.regional_regions or [],
        dry_run=parsed.dry_run,
        self_destroy=parsed.self_destroy,
        account=parsed.account,
        log_level=parsed.log_level,
        interactive=parsed.interactive,
        container=choose(parsed.container, "container", DEFAULT_CONTAINER),
        deployment_ring=parsed.deployment_ring,
        local=parsed.local,
        runner=parsed.runner,
        pull_request=parsed.pull_request,
        step_whitelist=parsed.step_whitelist or [],
        dockerfile=choose(parsed.dockerfile, "dockerfile", DEFAULT_DOCKERFILE),
        container_engine=choose(parsed.container_engine, "container_engine", DEFAULT_CONTAINER_ENGINE),
        test=parsed.test,
    )


def build_run_arguments(
    options: DeployOptions,
    environ: Mapping[str, str],
    working_dir: str | os.PathLike[str],
    container_tag: str,
) -> list[str]:
    """Return the full command line that runs the built project container."""
    namespace = options.namespace
    deployment_ring = options.deployment_ring
    if options.local:
        namespace = get_machine_name(environ)
        deployment_ring = "local"
    elif options.pull_request:
        namespace = options.pull_request
        deployment_ring = "pr"

    args = [options.container_engine, "run", "--rm"]
    args = append_env_if_set(args, "DEPLOYMENT_RING", deployment_ring)
    args = append_env_if_set(args, "RUNNER", options.runner)
    args = append_env_if_set(args, "NAMESPACE", namespace)
    args = append_env_if_set(args, "VERSION", options.app_version)
    args = append_env_if_set(args, "ENVIRONMENT", options.environment)
    args = append_env_if_set(args, "DRY_RUN", str(options.dry_run).lower())
    args = append_env_if_set(args, "SELF_DESTROY", str(options.self_destroy).lower())
    args = append_env_if_set(args, "STEP_WHITELIST", ",".join(options.step_whitelist))
    if options.primary_regions:
        args = append_env_if_set(args, "PRIMARY_REGION", options.primary_regions[0])
    if options.regional_regions:
        args = append_env_if_set(args, "REGIONAL_REGIONS", ",".join(options.regional_regions))
    args = append_env_if_set(args, "ACCOUNT_ID", options.account)
    args = append_env_if_set(args, "LOG_LEVEL", options.log_level)

    if options.interactive:
        args.append("-it")

    for key, value in environ.items():
        if key.startswith(_PASSTHROUGH_PREFIXES):
            args += ["-e", f"{key}={value}"]

    directory = os.fspath(working_dir)
    for host, target in (
        (".azure", "/root/.azure"),
        (".azurepowershell", "/root/.Azure"),
        (".config/gcloud", "/root/.config/gcloud"),
        (".aws", "/root/.aws"),
        ("tfstate", "/runiac/tfstate"),
    ):
        args += ["-v", f"{directory}/.runiac/{host}:{target}"]

    args.append(container_tag)
    return args


def _load_file_config(path: str | os.PathLike[str], environ: Mapping[str, str]) -> dict[str, Any]:
    config: dict[str, Any] = {}
    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError):
        data = None
    if isinstance(data, dict):
        config = {str(key).lower(): value for key, value in data.items()}
    for key in _FILE_CONFIG_KEYS:
        value = environ.get(key.upper())
        if value:
            config[key] = value
    return config


def _deploy(argv: list[str], file_config: Mapping[str, Any]) -> int:
    options = parse_deploy_options(argv, file_config)
    if options.test:
        return 0

    if shutil.which(options.container_engine) is None:
        print(f"please add '{options.container_engine}' to the path")

    try:
        init_action(".", BASE_CONTAINER)
    except OSError as err:
        _log.error("%s", err)
        print("You need to run 'runiac init' before you can use the CLI in this directory")
        return 1

    container_tag = str(file_config.get("project") or "")
    env = {**os.environ, "DOCKER_BUILDKIT": "1"}

    build = [options.container_engine, "build", "-t", container_tag, "-f", options.dockerfile]
    build += get_build_arguments(options.container)
    _log.info("%s", " ".join(build))

    try:
        if options.dockerfile:
            subprocess.run(build, env=env, check=True)
        else:
            print("Building project container...", file=sys.stderr)
            result = subprocess.run(build, env=env, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
            if result.returncode != 0:
                _log.error("%s", result.stdout)
                _log.critical("Building project container failed with exit status %s", result.returncode)
                return 1
    except (OSError, subprocess.CalledProcessError) as err:
        _log.critical("Runiac failed to build %s: %s", options.dockerfile, err)
        return 1

    _log.info("Completed build, lets run!")

    try:
        run = build_run_arguments(options, env, os.getcwd(), container_tag)
    except (OSError, subprocess.CalledProcessError) as err:
        _log.critical("%s", err)
        return 1

    _log.info("%s", " ".join(run))
    try:
        subprocess.run(run, env=env, check=True)
    except (OSError, subprocess.CalledProcessError) as err:
        _log.critical("Running iac failed with %s", err)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the runiac command line; return the process exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    file_config = _load_file_config(CONFIG_FILE, os.environ)

    if not argv or argv[0] in ("-h", "--help", "help"):
        print(_ROOT_HELP)
        return 0

    command, rest = argv[0], argv[1:]
    if command == "deploy":
        return _deploy(rest, file_config)
    if command == "version":
        print(f"runiac {VERSION}. Commit {COMMIT}.  Built on {DATE}.")
        return 0

    print(f'unknown command "{command}" for "runiac"', file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())