"""Preparing and running step executions."""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Mapping
from typing import Any, Callable

from runiac.config import (
    DeployResult,
    RegionDeployType,
    Step,
    StepExecution,
    StepOutput,
    Stepper,
    StepTestOutput,
)
from runiac.deployment_status import StepDeploymentRecorder
from runiac.logformat import FieldsAdapter

_RUNNERS: dict[str, Callable[[], Stepper]] = {}


def register_runner(name: str, factory: Callable[[], Stepper]) -> None:
    """Make a stepper available under a runner name."""
    if not callable(factory):
        raise TypeError(f"runner factory for '{name}' is not callable")
    _RUNNERS[name] = factory


def determine_runner(step: Step) -> Stepper | None:
    """Return the stepper for the step's configured runner, or None if unknown."""
    factory = _RUNNERS.get(step.deploy_config.runner)
    return factory() if factory is not None else None


def append_to_step_params(
    step_params: dict[str, str], incoming_output_vars: Mapping[str, Mapping[str, str]]
) -> dict[str, str]:
    """Add previous step outputs as ``<step>-<var>`` entries and return the params."""
    for step_name, outputs in incoming_output_vars.items():
        for key, value in outputs.items():
            step_params[f"{step_name}-{key}"] = value
    return step_params


def keys_string_map(mapping: Mapping[str, Any]) -> str:
    return "[" + ", ".join(mapping) + "]"


def output_to_string(value: Any) -> str:
    """Render an output variable value as a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), default=str)


def _with_fields(logger: Any, **fields: Any) -> FieldsAdapter:
    if isinstance(logger, FieldsAdapter):
        return logger.with_fields(**fields)
    if isinstance(logger, logging.LoggerAdapter):
        return FieldsAdapter(logger.logger, {**(logger.extra or {}), **fields})
    if isinstance(logger, logging.Logger):
        return FieldsAdapter(logger, fields)
    return FieldsAdapter(logging.getLogger("runiac"), fields)


def new_execution(step, logger, region_deploy_type, region, default_step_output_variables) -> StepExecution:
    """Build an execution of ``step`` for one region from the step's config."""
    cfg = step.deploy_config
    return StepExecution(
        region_deploy_type=region_deploy_type,
        region=region,
        target_account_id=cfg.target_account_id,
        region_group=cfg.region_group,
        default_step_output_variables=default_step_output_variables if default_step_output_variables is not None else {},
        environment=cfg.environment,
        app_version=cfg.version,
        account_id=cfg.account_id,
        core_accounts=cfg.core_accounts,
        step_name=step.name,
        step_id=step.id,
        namespace=cfg.namespace,
        dir=step.dir,
        deployment_ring=cfg.deployment_ring,
        dry_run=cfg.dry_run,
        max_retries=cfg.max_retries,
        max_test_retries=cfg.max_test_retries,
        project=cfg.project,
        track_name=step.track_name,
        region_group_regions=cfg.regional_regions,
        unique_external_execution_id=cfg.unique_external_execution_id,
        region_groups=cfg.region_groups,
        self_destroy=cfg.self_destroy,
        logger=_with_fields(logger, step=step.name, stepProgression=step.progression_level),
    )


def init_execution(
    step, logger, region_deploy_type, region, default_step_output_variables, recorder=None
) -> StepExecution:
    """Prepare an execution: per-region working copy and step parameters.

    Regional executions get their own copy of the step's ``regional`` directory so
    that regions can run concurrently. Raises OSError if the copy fails.
    """
    execution = new_execution(step, logger, region_deploy_type, region, default_step_output_variables)

    if execution.region_deploy_type == RegionDeployType.REGIONAL:
        regional_dir = os.path.join(step.dir, "regional")
        exec_dir = os.path.join(step.dir, f"regional-{execution.region}")
        try:
            os.makedirs(exec_dir, mode=0o700, exist_ok=True)
            execution.logger.info("Copying %s regional to %s", execution.region, exec_dir)
            shutil.copytree(regional_dir, exec_dir, dirs_exist_ok=True)
        except OSError as err:
            execution.logger.with_error(err).error("%s", err)
            raise
        execution.dir = exec_dir

    execution.logger = _with_fields(execution.logger, accountID=execution.account_id)

    params = {
        "runiac_target_account_id": execution.target_account_id,
        "runiac_deployment_ring": execution.deployment_ring,
        "runiac_project": execution.project.lower(),
        "runiac_track": execution.track_name.lower(),
        "runiac_step": execution.step_name.lower(),
        "runiac_region_deploy_type": str(execution.region_deploy_type).lower(),
        "runiac_region_group": execution.region_group.lower(),
        "runiac_primary_region": execution.primary_region,
    }

    execution.logger.debug("output variables: %s", keys_string_map(execution.default_step_output_variables))

    step_params = append_to_step_params(params, execution.default_step_output_variables)

    if step.output.output_variables is not None:
        for key, value in step.output.output_variables.items():
            step_params[key] = output_to_string(value)
    elif recorder is not None:
        recorder.record_step_start(
            execution.track_name,
            execution.step_name,
            str(execution.region_deploy_type),
            execution.region,
            execution.dry_run,
        )

    execution.optional_step_params = step_params
    return execution


def _record_args(execution: StepExecution) -> tuple:
    return (
        "",
        execution.track_name,
        execution.step_name,
        str(execution.region_deploy_type),
        execution.region,
        execution.project,
        execution.region_group_regions,
    )


def _post_step(execution: StepExecution, output: StepOutput, recorder: StepDeploymentRecorder | None) -> None:
    if recorder is None:
        return
    args = _record_args(execution)
    if output.err is not None:
        recorder.record_step_fail(*args, output.err)
    elif output.status == DeployResult.FAIL:
        recorder.record_step_fail(*args, RuntimeError("step recorded failure with no error thrown"))
    elif output.status == DeployResult.UNSTABLE:
        recorder.record_step_fail(*args, RuntimeError("step recorded unstable with no error thrown"))
    else:
        recorder.record_step_success(*args)


def execute_step(stepper: Stepper, execution: StepExecution, recorder=None) -> StepOutput:
    """Deploy a step and record its result."""
    if execution.logger is not None:
        execution.logger.debug("%s", execution.required_step_params)
        execution.logger.debug("%s", execution.optional_step_params)
    output = stepper.execute_step(execution)
    _post_step(execution, output, recorder)
    return output


def execute_step_destroy(stepper: Stepper, execution: StepExecution) -> StepOutput:
    return stepper.execute_step_destroy(execution)


def execute_step_tests(stepper: Stepper, execution: StepExecution, recorder=None) -> StepTestOutput:
    """Run a step's tests and record a failure if they raised an error."""
    output = stepper.execute_step_tests(execution)
    if output.err is not None and recorder is not None:
        recorder.record_step_test_fail(*_record_args(execution), output.err)
    return output