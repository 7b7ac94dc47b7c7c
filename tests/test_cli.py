import pytest

from runiac.cli import (
    DOCKER_IGNORE,
    DeployOptions,
    append_env_if_set,
    build_run_arguments,
    get_build_arguments,
    get_machine_name,
    init_action,
    main,
    parse_deploy_options,
    sanitize_machine_name,
)

SANITIZE_CASES = {
    "foobar": "foobar",
    "foo()bar": "foo__bar",
    "!234 Test": "_234_Test",
    "!@#$%^&*()": "__________",
    "trailing space ": "trailing_space",
    "\nwhite space\n\t": "white_space",
    "domain\\user": "domain_user",
}


@pytest.mark.parametrize("raw,expected", sorted(SANITIZE_CASES.items()))
def test_sanitize_machine_name(raw, expected):
    assert sanitize_machine_name(raw) == expected


@pytest.mark.parametrize(
    "container,expected",
    [
        ("foobar", ["--build-arg", "RUNIAC_CONTAINER=foobar", "."]),
        ("", ["."]),
    ],
)
def test_get_build_arguments_sets_container_only_when_given(container, expected):
    assert get_build_arguments(container) == expected


def test_deploy_options_defaults_without_config():
    options = parse_deploy_options(["--test"], {})
    assert options.test is True
    assert options.dockerfile == ".runiac/Dockerfile"
    assert options.container_engine == "docker"
    assert options.container == "docker.io/runiac/deploy:latest-alpine-full"
    assert options.runner == "terraform"


def test_deploy_options_use_file_config_when_not_on_command_line():
    file_config = {"container_engine": "mock", "container": "mock", "dockerfile": "mock"}
    options = parse_deploy_options(["--test"], file_config)
    assert options.dockerfile == "mock"
    assert options.container_engine == "mock"
    assert options.container == "mock"


def test_deploy_options_command_line_takes_precedence():
    file_config = {"container_engine": "ignore_me", "container": "ignore_me", "dockerfile": "ignore_me"}
    options = parse_deploy_options(
        [
            "--test",
            "--dockerfile=mockofseagulls",
            "--container-engine=mockofseagulls",
            "--container=mockofseagulls",
        ],
        file_config,
    )
    assert options.dockerfile == "mockofseagulls"
    assert options.container_engine == "mockofseagulls"
    assert options.container == "mockofseagulls"


def test_deploy_options_lists():
    options = parse_deploy_options(
        ["-s", "a/b,c/d", "-s", "e/f", "-p", "centralus", "-r", "eastus", "-r", "westus"], None
    )
    assert options.step_whitelist == ["a/b", "c/d", "e/f"]
    assert options.primary_regions == ["centralus"]
    assert options.regional_regions == ["eastus", "westus"]


def test_append_env_if_set():
    assert append_env_if_set(["x"], "RUNNER", "arm") == ["x", "-e", "RUNIAC_RUNNER=arm"]
    assert append_env_if_set(["x"], "RUNNER", "") == ["x"]


def test_get_machine_name_prefers_user():
    assert get_machine_name({"USER": "jane doe", "USERNAME": "other"}) == "jane_doe"


def test_get_machine_name_falls_back_to_username():
    assert get_machine_name({"USERNAME": "domain\\user"}) == "domain_user"


def test_init_action_writes_files(tmp_path):
    dockerfile = init_action(tmp_path, "")
    assert dockerfile == tmp_path / ".runiac" / "Dockerfile"
    assert "FROM $RUNIAC_CONTAINER" in dockerfile.read_text()
    assert (tmp_path / ".runiac" / ".dockerignore").read_text() == DOCKER_IGNORE


def test_build_run_arguments_layout():
    options = DeployOptions(account="acct", primary_regions=["centralus", "eastus"], regional_regions=["a", "b"])
    args = build_run_arguments(options, {}, "/work", "proj")
    assert args[:3] == ["docker", "run", "--rm"]
    assert args[-1] == "proj"
    assert "RUNIAC_RUNNER=terraform" in args
    assert "RUNIAC_DRY_RUN=false" in args
    assert "RUNIAC_SELF_DESTROY=false" in args
    assert "RUNIAC_PRIMARY_REGION=centralus" in args
    assert "RUNIAC_REGIONAL_REGIONS=a,b" in args
    assert "RUNIAC_ACCOUNT_ID=acct" in args
    assert "/work/.runiac/tfstate:/runiac/tfstate" in args
    assert not any(arg.startswith("RUNIAC_NAMESPACE=") for arg in args)


def test_build_run_arguments_local_uses_machine_name():
    options = DeployOptions(local=True)
    args = build_run_arguments(options, {"USER": "jane doe"}, "/w", "tag")
    assert "RUNIAC_NAMESPACE=jane_doe" in args
    assert "RUNIAC_DEPLOYMENT_RING=local" in args


def test_build_run_arguments_pull_request():
    options = DeployOptions(pull_request="42")
    args = build_run_arguments(options, {}, "/w", "tag")
    assert "RUNIAC_NAMESPACE=42" in args
    assert "RUNIAC_DEPLOYMENT_RING=pr" in args


def test_build_run_arguments_passes_selected_environment():
    environ = {"TF_VAR_x": "1", "HOME": "/h", "AWS_REGION": "r", "ARM_CLIENT": "c"}
    options = DeployOptions(interactive=True)
    args = build_run_arguments(options, environ, "/w", "tag")
    assert "TF_VAR_x=1" in args
    assert "AWS_REGION=r" in args
    assert "ARM_CLIENT=c" in args
    assert "HOME=/h" not in args
    assert "-it" in args


def test_main_deploy_test_flag_reads_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "runiac.yml").write_text("container_engine: mock\n")
    assert main(["deploy", "--test"]) == 0


def test_main_version(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out.startswith("runiac ")


def test_main_unknown_command(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["bogus"]) == 1


def test_main_without_command_prints_help(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main([]) == 0
    assert "deploy" in capsys.readouterr().out