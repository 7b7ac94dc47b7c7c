import logging

import pytest

from runiac.config import (
    Config,
    DeployResult,
    RegionDeployType,
    Step,
    StepExecution,
    StepOutput,
    Stepper,
    StepTestOutput,
)
from runiac.deployment_status import StepDeploymentRecorder
from runiac import steps

LOGGER = logging.getLogger("test-steps")


class FakeStepper(Stepper):
    def __init__(self, status=DeployResult.SUCCESS, err=None, test_err=None):
        self.status = status
        self.err = err
        self.test_err = test_err
        self.calls = []

    def pre_execute(self, execution):
        return execution

    def execute_step(self, execution):
        self.calls.append("deploy")
        return StepOutput(status=self.status, step_name=execution.step_name, err=self.err)

    def execute_step_tests(self, execution):
        self.calls.append("test")
        return StepTestOutput(step_name=execution.step_name, err=self.test_err)

    def execute_step_destroy(self, execution):
        self.calls.append("destroy")
        return StepOutput(status=DeployResult.SUCCESS, step_name=execution.step_name)


def _step(directory="stub"):
    return Step(
        dir=str(directory),
        name="stubName",
        track_name="stubTrackName",
        deploy_config=Config(
            deployment_ring="stubDeploymentRing",
            project="stubProject",
            dry_run=True,
            regional_regions=["stub"],
            unique_external_execution_id="stubExecutionID",
            max_retries=3,
            max_test_retries=2,
        ),
    )


def test_new_execution_sets_fields():
    step = _step()
    execution = steps.new_execution(step, LOGGER, RegionDeployType.REGIONAL, "region", {})
    assert execution.dir == step.dir
    assert execution.step_name == "stubName"
    assert execution.region == "region"
    assert execution.region_deploy_type == RegionDeployType.REGIONAL
    assert execution.deployment_ring == "stubDeploymentRing"
    assert execution.project == "stubProject"
    assert execution.dry_run is True
    assert execution.track_name == "stubTrackName"
    assert execution.unique_external_execution_id == "stubExecutionID"
    assert execution.region_group_regions == ["stub"]
    assert execution.max_retries == 3
    assert execution.max_test_retries == 2
    assert execution.logger.extra["step"] == "stubName"


def test_append_to_step_params():
    output_vars = {"cool_step1": {"k1": "v1", "k2": "v2"}, "cool_step2": {"k3": "v3"}}
    params = steps.append_to_step_params({}, output_vars)
    assert len(params) == 3
    assert params["cool_step1-k1"] == "v1"
    assert params["cool_step1-k2"] == "v2"
    assert params["cool_step2-k3"] == "v3"


def test_keys_string_map():
    assert steps.keys_string_map({"a": {}, "b": {}}) == "[a, b]"
    assert steps.keys_string_map({}) == "[]"


@pytest.mark.parametrize(
    "value, expected",
    [("text", "text"), (None, ""), (True, "true"), (3, "3"), (["a", "b"], '["a","b"]')],
)
def test_output_to_string(value, expected):
    assert steps.output_to_string(value) == expected


def test_determine_runner_uses_registry():
    steps.register_runner("fake-runner-for-tests", FakeStepper)
    step = Step(deploy_config=Config(runner="fake-runner-for-tests"))
    assert isinstance(steps.determine_runner(step), FakeStepper)
    assert steps.determine_runner(Step(deploy_config=Config(runner="unknown-runner"))) is None


def test_register_runner_rejects_non_callable():
    with pytest.raises(TypeError):
        steps.register_runner("broken", "not callable")


def test_init_execution_primary_params_and_start_recorded():
    recorder = StepDeploymentRecorder()
    step = _step()
    step.deploy_config.dry_run = False
    execution = steps.init_execution(
        step, LOGGER, RegionDeployType.PRIMARY, "us-east-1", {"prev": {"out": "val"}}, recorder
    )
    params = execution.optional_step_params
    assert params["runiac_project"] == "stubproject"
    assert params["runiac_track"] == "stubtrackname"
    assert params["runiac_region_deploy_type"] == "primary"
    assert params["prev-out"] == "val"
    assert recorder.in_progress == {"#stubTrackName#stubName#primary#us-east-1"}


def test_init_execution_uses_step_output_variables():
    step = _step()
    step.output.output_variables = {"name": "value", "count": 2}
    recorder = StepDeploymentRecorder()
    execution = steps.init_execution(step, LOGGER, RegionDeployType.PRIMARY, "r", {}, recorder)
    assert execution.optional_step_params["name"] == "value"
    assert execution.optional_step_params["count"] == "2"
    assert recorder.in_progress == set()


def test_init_execution_regional_copies_directory(tmp_path):
    regional = tmp_path / "regional"
    regional.mkdir()
    (regional / "main.tf").write_text("resource")
    execution = steps.init_execution(_step(tmp_path), LOGGER, RegionDeployType.REGIONAL, "eastus", {})
    assert execution.dir == str(tmp_path / "regional-eastus")
    assert (tmp_path / "regional-eastus" / "main.tf").read_text() == "resource"


def test_init_execution_regional_missing_source_raises(tmp_path):
    with pytest.raises(OSError):
        steps.init_execution(_step(tmp_path), LOGGER, RegionDeployType.REGIONAL, "eastus", {})


@pytest.mark.parametrize(
    "status, err, expected",
    [
        (DeployResult.SUCCESS, None, "SUCCESS"),
        (DeployResult.FAIL, None, "FAIL"),
        (DeployResult.UNSTABLE, None, "FAIL"),
        (DeployResult.SUCCESS, RuntimeError("boom"), "FAIL"),
    ],
)
def test_execute_step_records_result(status, err, expected):
    recorder = StepDeploymentRecorder()
    stepper = FakeStepper(status=status, err=err)
    execution = StepExecution(step_name="s", track_name="t", region="r", project="p", region_group_regions=["r"])
    output = steps.execute_step(stepper, execution, recorder)
    assert output.status == status
    assert str(recorder.step_deployments["#t#s#primary#r"].result) == expected


def test_execute_step_tests_records_unstable_only_on_error():
    recorder = StepDeploymentRecorder()
    execution = StepExecution(step_name="s", track_name="t", region="r", project="p")
    steps.execute_step_tests(FakeStepper(), execution, recorder)
    assert recorder.step_deployments == {}
    output = steps.execute_step_tests(FakeStepper(test_err=RuntimeError("x")), execution, recorder)
    assert str(output.err) == "x"
    assert str(recorder.step_deployments["#t#s#primary#r"].result) == "UNSTABLE"


def test_execute_step_destroy_calls_stepper():
    stepper = FakeStepper()
    output = steps.execute_step_destroy(stepper, StepExecution(step_name="s"))
    assert stepper.calls == ["destroy"]
    assert output.step_name == "s"