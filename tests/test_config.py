import json

import pytest

from runiac.config import (
    Account,
    Config,
    ConfigError,
    DeployResult,
    RegionDeployType,
    RunnerPlugin,
    Step,
    Stepper,
    get_config,
    validate_config,
)


def _base_env(**extra):
    env = {"RUNIAC_PRIMARY_REGION": "centralus", "RUNIAC_RUNNER": "terraform"}
    env.update(extra)
    return env


def test_get_config_environment_variables_should_match(tmp_path):
    env = {
        "RUNIAC_PRIMARY_REGION": "centralus",
        "RUNIAC_RUNNER": "terraform",
        "RUNIAC_STEP_WHITELIST": "default/default",
    }
    conf = get_config(env, tmp_path)
    assert conf.primary_region == "centralus"
    assert conf.runner == "terraform"
    assert conf.step_whitelist
    assert conf.step_whitelist[0] == "default/default"
    assert conf.target_all is False


def test_defaults_applied(tmp_path):
    conf = get_config(_base_env(), tmp_path)
    assert conf.max_retries == 3
    assert conf.max_test_retries == 2
    assert conf.log_level == "info"
    assert conf.project == "runiac"
    assert conf.target_all is True
    assert conf.step_whitelist == []


def test_empty_environment_value_is_ignored(tmp_path):
    conf = get_config(_base_env(RUNIAC_PROJECT=""), tmp_path)
    assert conf.project == "runiac"


def test_reads_yaml_file(tmp_path):
    (tmp_path / "runiac.yml").write_text(
        "project: demo\nprimary_region: eastus\nregional_regions: eastus,westus\nrunner: arm\n"
    )
    conf = get_config({}, tmp_path)
    assert conf.project == "demo"
    assert conf.primary_region == "eastus"
    assert conf.regional_regions == ["eastus", "westus"]
    assert conf.runner == "arm"


def test_reads_json_file_with_core_accounts(tmp_path):
    data = {
        "primary_region": "us-east-1",
        "runner": "terraform",
        "core_accounts": {"logging": {"ID": "acct-1", "CSP": "AWS"}},
        "region_grouprs": {"aws": {"us": ["us-east-1"]}},
    }
    (tmp_path / "runiac.json").write_text(json.dumps(data))
    conf = get_config({}, tmp_path)
    assert conf.core_accounts == {"logging": Account(id="acct-1", csp="AWS")}
    assert conf.region_groups == {"aws": {"us": ["us-east-1"]}}


def test_environment_overrides_file(tmp_path):
    (tmp_path / "runiac.yaml").write_text("primary_region: eastus\nrunner: arm\nmax_retries: 7\n")
    conf = get_config({"RUNIAC_PRIMARY_REGION": "westus", "RUNIAC_MAX_RETRIES": "5"}, tmp_path)
    assert conf.primary_region == "westus"
    assert conf.runner == "arm"
    assert conf.max_retries == 5


def test_account_id_sets_target_account(tmp_path):
    conf = get_config(_base_env(RUNIAC_ACCOUNT_ID="1"), tmp_path)
    assert conf.account_id == "1"
    assert conf.target_account_id == "1"


@pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("False", False), ("0", False)])
def test_bool_parsing(tmp_path, raw, expected):
    conf = get_config(_base_env(RUNIAC_DRY_RUN=raw), tmp_path)
    assert conf.dry_run is expected


def test_invalid_bool_raises(tmp_path):
    with pytest.raises(ConfigError):
        get_config(_base_env(RUNIAC_SELF_DESTROY="maybe"), tmp_path)


def test_invalid_int_raises(tmp_path):
    with pytest.raises(ConfigError):
        get_config(_base_env(RUNIAC_MAX_RETRIES="abc"), tmp_path)


def test_missing_primary_region_raises(tmp_path):
    with pytest.raises(ConfigError) as info:
        get_config({"RUNIAC_RUNNER": "terraform"}, tmp_path)
    assert "primary_region" in str(info.value)
    assert info.value.config.runner == "terraform"


def test_invalid_runner_raises(tmp_path):
    with pytest.raises(ConfigError) as info:
        get_config({"RUNIAC_PRIMARY_REGION": "centralus", "RUNIAC_RUNNER": "pulumi"}, tmp_path)
    assert "invalid-runner" in str(info.value)
    assert len(info.value.problems) == 1


def test_malformed_file_raises(tmp_path):
    (tmp_path / "runiac.yaml").write_text("project: [unclosed\n")
    with pytest.raises(ConfigError):
        get_config(_base_env(), tmp_path)


def test_validate_config_accepts_valid():
    conf = Config(primary_region="centralus", runner="arm")
    validate_config(conf)
    assert conf.runner == "arm"


def test_validate_config_reports_both_problems():
    with pytest.raises(ConfigError) as info:
        validate_config(Config())
    assert len(info.value.problems) == 2


def test_enum_strings():
    assert RegionDeployType.PRIMARY.__str__() == "primary"
    assert RegionDeployType.REGIONAL.__str__() == "regional"
    assert [member.__str__() for member in DeployResult][:4] == ["FAIL", "SUCCESS", "UNSTABLE", "SKIPPED"]


def test_step_defaults_are_independent():
    first, second = Step(), Step()
    first.deploy_config.regional_regions.append("x")
    assert second.deploy_config.regional_regions == []
    assert first.output.output_variables is None


def test_interfaces_are_abstract():
    with pytest.raises(TypeError):
        Stepper()
    with pytest.raises(TypeError):
        RunnerPlugin()