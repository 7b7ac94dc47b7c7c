"""Running a track's steps within a single region, for deploy and destroy."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Any, Callable

from runiac.config import (
    DeployResult,
    RegionDeployType,
    Step,
    StepOutput,
    StepTestOutput,
)
from runiac.logformat import FieldsAdapter
from runiac.steps import (
    execute_step,
    execute_step_destroy,
    execute_step_tests,
    init_execution,
    output_to_string,
)
from runiac.track_discovery import ExecutionOutput, RegionExecution

# step_runner(region, region_deploy_type, logger, default_step_output_variables,
#             step_progression, step, destroy) -> Step with its output set
StepRunner = Callable[[str, RegionDeployType, Any, dict, int, Step, bool], Step]


def _with_fields(logger: Any, **fields: Any) -> FieldsAdapter:
    if isinstance(logger, FieldsAdapter):
        return logger.with_fields(**fields)
    if isinstance(logger, logging.LoggerAdapter):
        return FieldsAdapter(logger.logger, {**(logger.extra or {}), **fields})
    if isinstance(logger, logging.Logger):
        return FieldsAdapter(logger, fields)
    return FieldsAdapter(logging.getLogger("runiac"), fields)


def append_track_output(
    track_output_variables: dict[str, dict[str, str]] | None, output: StepOutput
) -> dict[str, dict[str, str]]:
    """Add a step's output variables to the track's variables and return them.

    Regional outputs are keyed ``<step>-regional``, primary ones by the step name.
    """
    if track_output_variables is None:
        track_output_variables = {}
    key = output.step_name
    if output.region_deploy_type == RegionDeployType.REGIONAL:
        key = f"{key}-{output.region_deploy_type}"
    values = track_output_variables.setdefault(key, {})
    for name, value in (output.output_variables or {}).items():
        values[name] = output_to_string(value)
    return track_output_variables


def _failed_step(step: Step, region: str, region_deploy_type: RegionDeployType, err: BaseException) -> Step:
    return replace(
        step,
        output=StepOutput(
            status=DeployResult.FAIL,
            region_deploy_type=region_deploy_type,
            region=region,
            step_name=step.name,
            err=err,
        ),
    )


def run_step(
    region: str,
    region_deploy_type: RegionDeployType,
    logger: Any,
    default_step_output_variables: dict[str, dict[str, str]] | None,
    step_progression: int,
    step: Step,
    destroy: bool = False,
    recorder: Any = None,
) -> Step:
    """Deploy or destroy one step in one region and return it with its output."""
    try:
        execution = init_execution(
            step, logger, region_deploy_type, region, default_step_output_variables, recorder
        )
    except OSError as err:
        return _failed_step(step, region, region_deploy_type, err)

    runner = step.runner
    if runner is None:
        err = RuntimeError(f"no runner configured for step {step.name}")
        execution.logger.with_error(err).error("%s", err)
        return _failed_step(step, region, region_deploy_type, err)

    try:
        prepared = runner.pre_execute(execution)
    except Exception as err:  # a failed preparation does not stop the step
        execution.logger.with_error(err).warning("Pre-execution of step failed: %s", err)
        prepared = execution
    if prepared is None:
        prepared = execution

    if destroy:
        output = execute_step_destroy(runner, prepared)
    else:
        output = execute_step(runner, prepared, recorder)
    return replace(step, output=output)


def run_step_test(
    logger: Any,
    region: str,
    region_deploy_type: RegionDeployType,
    default_step_output_variables: dict[str, dict[str, str]] | None,
    step: Step,
    recorder: Any = None,
) -> StepTestOutput:
    """Run a deployed step's tests unless the deploy failed, was skipped or was a dry run."""
    test_logger = _with_fields(
        logger, step=step.name, stepProgression=step.progression_level, action="test"
    )
    test_logger.info("Starting Step Tests")

    if step.output.err is not None or step.output.status == DeployResult.FAIL:
        test_logger.warning("Skipping Tests Due to Deployment Error")
        return StepTestOutput()
    if step.deploy_config.dry_run:
        test_logger.info("Skipping Tests for Dry Run")
        return StepTestOutput()
    if step.output.status == DeployResult.SKIPPED:
        test_logger.warning("Skipping Tests because step was also skipped")
        return StepTestOutput()

    test_logger.info("Triggering Step Tests")
    try:
        execution = init_execution(
            step, test_logger, region_deploy_type, region, default_step_output_variables, recorder
        )
    except OSError as err:
        return StepTestOutput(step_name=step.name, err=err)

    if step.runner is None:
        return StepTestOutput(step_name=step.name, err=RuntimeError(f"no runner configured for step {step.name}"))

    output = execute_step_tests(step.runner, execution, recorder)
    if output.err is not None:
        test_logger.with_error(output.err).error("Error executing tests for step")
    return output


def _with_status(step: Step, status: DeployResult) -> Step:
    return replace(step, output=replace(step.output, status=status))


def _default_runner(region, region_deploy_type, logger, variables, progression, step, destroy) -> Step:
    return run_step(region, region_deploy_type, logger, variables, progression, step, destroy)


def execute_deploy_track_region(execution: RegionExecution, step_runner: StepRunner | None = None) -> RegionExecution:
    """Deploy a track's steps in one region, progression by progression.

    Steps of a progression run concurrently. Later progressions are skipped after
    a failure, and regional steps are skipped after a primary-region failure.
    Step tests run in the background as their steps finish.
    """
    runner = step_runner if step_runner is not None else _default_runner
    logger = _with_fields(
        execution.logger, region=execution.region, regionDeployType=str(execution.region_deploy_type)
    )
    variables = execution.default_step_output_variables
    output = ExecutionOutput(
        name=execution.track_name,
        dir=execution.track_dir,
        steps={},
        step_output_variables=variables if variables is not None else {},
    )
    regional = execution.region_deploy_type == RegionDeployType.REGIONAL
    primary_failures = execution.primary_output.failure_count if execution.primary_output is not None else 0

    test_futures = []
    with ThreadPoolExecutor(max_workers=max(1, execution.track_steps_with_tests_count)) as test_pool:
        for level in range(1, execution.track_step_progressions_count + 1):
            level_steps = execution.track_ordered_steps.get(level, [])
            if not level_steps:
                continue
            with ThreadPoolExecutor(max_workers=len(level_steps)) as pool:
                futures = []
                for step in level_steps:
                    if regional and not step.regional_resources_exist:
                        futures.append(pool.submit(_with_status, step, DeployResult.NA))
                    elif level > 1 and output.failure_count > 0:
                        logger.with_fields(step=step.name).warning(
                            "Skipping step due to earlier step failures in this region"
                        )
                        futures.append(pool.submit(_with_status, step, DeployResult.SKIPPED))
                    elif primary_failures > 0:
                        logger.with_fields(step=step.name).warning(
                            "Skipping step due to failures in primary region deployment"
                        )
                        futures.append(pool.submit(_with_status, step, DeployResult.SKIPPED))
                    else:
                        futures.append(
                            pool.submit(
                                runner,
                                execution.region,
                                execution.region_deploy_type,
                                logger,
                                output.step_output_variables,
                                level,
                                step,
                                False,
                            )
                        )

                for future in as_completed(futures):
                    done = future.result()
                    if done.output.status == DeployResult.SKIPPED:
                        output.skipped_count += 1
                    else:
                        output.executed_count += 1
                    output.steps[done.name] = done
                    output.step_output_variables = append_track_output(output.step_output_variables, done.output)

                    if done.output.err is not None or done.output.status == DeployResult.FAIL:
                        output.failure_count += 1
                        output.failed_steps.append(done)

                    wants_tests = done.regional_tests_exist if regional else done.tests_exist
                    if wants_tests:
                        logger.debug("Triggering tests")
                        test_futures.append(
                            test_pool.submit(
                                run_step_test,
                                logger,
                                execution.region,
                                execution.region_deploy_type,
                                output.step_output_variables,
                                done,
                            )
                        )

        for future in as_completed(test_futures):
            test_output = future.result()
            if test_output.step_name in output.steps:
                output.steps[test_output.step_name] = replace(
                    output.steps[test_output.step_name], test_output=test_output
                )
            output.failed_steps = [
                replace(failed, test_output=test_output) if failed.name == test_output.step_name else failed
                for failed in output.failed_steps
            ]
            if test_output.err is not None:
                output.failed_test_count += 1

    return replace(execution, output=output)


def execute_destroy_track_region(execution: RegionExecution, step_runner: StepRunner | None = None) -> RegionExecution:
    """Destroy a track's steps in one region, from the last progression to the first."""
    runner = step_runner if step_runner is not None else _default_runner
    logger = _with_fields(
        execution.logger, region=execution.region, regionDeployType=str(execution.region_deploy_type)
    )
    variables = execution.default_step_output_variables
    output = ExecutionOutput(
        name=execution.track_name,
        dir=execution.track_dir,
        steps={},
        step_output_variables=variables if variables is not None else {},
    )
    regional = execution.region_deploy_type == RegionDeployType.REGIONAL

    for level in range(execution.track_step_progressions_count, 0, -1):
        level_steps = execution.track_ordered_steps.get(level, [])
        if not level_steps:
            continue
        with ThreadPoolExecutor(max_workers=len(level_steps)) as pool:
            futures = []
            # the position within the progression decides skipping after failures
            for position, step in enumerate(level_steps):
                if (position > 1 and output.failure_count > 0) or (regional and not step.regional_resources_exist):
                    futures.append(pool.submit(_with_status, step, DeployResult.SKIPPED))
                else:
                    futures.append(
                        pool.submit(
                            runner,
                            execution.region,
                            execution.region_deploy_type,
                            logger,
                            output.step_output_variables,
                            level,
                            step,
                            True,
                        )
                    )
            for future in as_completed(futures):
                done = future.result()
                if done.output.status == DeployResult.SKIPPED:
                    output.skipped_count += 1
                else:
                    output.executed_count += 1
                output.steps[done.name] = done
                if done.output.err is not None:
                    output.failure_count += 1
                    output.failed_steps.append(done)

    return replace(execution, output=output)