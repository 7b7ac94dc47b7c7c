"""Recording of step deployment results and per-track regional summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_log = logging.getLogger(__name__)


class DeployPhase(Enum):
    PRE_DEPLOY = 0
    POST_DEPLOY = 1
    REGIONAL_POST_DEPLOY = 2

    def __str__(self) -> str:
        return self.name.replace("_", "")


class DeployResult(Enum):
    IN_PROGRESS = 0
    SUCCESS = 1
    FAIL = 2
    UNSTABLE = 3

    def __str__(self) -> str:
        return self.name.replace("_", "")


@dataclass
class UpdateStatusPayload:
    """Status of a single step deployment as reported to a status service."""

    product: str = ""
    account_id: str = ""
    csp: str = ""
    deployment_phase: str = ""
    version: str = ""
    result: str = ""
    result_message: str = ""
    tool: str = ""
    account_deployment_id: str = ""
    ring_deployment_id: str = ""
    release_deployment_id: str = ""
    stage: str = ""
    track: str = ""
    step: str = ""
    target_regions: list[str] = field(default_factory=list)
    primary_region: str = ""

    def as_dict(self) -> dict[str, Any]:
        """Return the payload keyed by its wire names."""
        return {
            "product": self.product,
            "account_id": self.account_id,
            "csp": self.csp,
            "deployment_phase": self.deployment_phase,
            "version": self.version,
            "result": self.result,
            "result_message": self.result_message,
            "tool": self.tool,
            "account_deployment_id": self.account_deployment_id,
            "ring_deployment_id": self.ring_deployment_id,
            "release_deployment_id": self.release_deployment_id,
            "stage": self.stage,
            "track": self.track,
            "step": self.step,
            "targeted_regions": list(self.target_regions),
            "primary_region": self.primary_region,
        }


@dataclass
class ExecutionResult:
    """Result of one step in one region."""

    result: DeployResult = DeployResult.IN_PROGRESS
    region: str = ""
    region_deploy_type: str = ""
    account_step_deployment_id: str = ""
    csp: str = ""
    target_regions: list[str] = field(default_factory=list)


@dataclass
class UpdateRegionalStatusPayload:
    """Summary of a step across all regions it was executed in."""

    account_step_deployment_id: str = ""
    failed_regions: list[str] = field(default_factory=list)
    deployment_phase: str = ""
    csp: str = ""
    result: str = ""
    result_message: str = ""
    target_regions: list[str] = field(default_factory=list)
    executions: list[ExecutionResult] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        """Return the payload keyed by its wire names."""
        return {
            "account_step_deployment_id": self.account_step_deployment_id,
            "failed_regions": list(self.failed_regions),
            "deployment_phase": self.deployment_phase,
            "csp": self.csp,
            "result": self.result,
            "result_message": self.result_message,
        }


def _key(track: str, step: str, region_deploy_type: Any, region: str) -> str:
    return f"#{track}#{step}#{region_deploy_type}#{region}"


class StepDeploymentRecorder:
    """Collects step results until a track is flushed."""

    def __init__(self) -> None:
        self.step_deployments: dict[str, ExecutionResult] = {}
        self.in_progress: set[str] = set()

    def record_step_start(self, track, step, region_deploy_type, region, dry_run) -> bool:
        """Note that a primary-region step has started; return whether it was noted."""
        if str(region_deploy_type) != "primary" or dry_run:
            return False
        self.in_progress.add(_key(track, step, region_deploy_type, region))
        return True

    def _record(self, result, csp, track, step, region_deploy_type, region, stage, target_regions) -> None:
        key = _key(track, step, region_deploy_type, region)
        self.in_progress.discard(key)
        self.step_deployments[key] = ExecutionResult(
            result=result,
            region=region,
            region_deploy_type=str(region_deploy_type),
            account_step_deployment_id=f"{stage}/{track}/{step}",
            csp=csp,
            target_regions=list(target_regions or []),
        )

    def record_step_success(self, csp, track, step, region_deploy_type, region, stage, target_regions) -> None:
        self._record(DeployResult.SUCCESS, csp, track, step, region_deploy_type, region, stage, target_regions)

    def record_step_fail(self, csp, track, step, region_deploy_type, region, stage, target_regions, error) -> None:
        self._record(DeployResult.FAIL, csp, track, step, region_deploy_type, region, stage, target_regions)

    def record_step_test_fail(self, csp, track, step, region_deploy_type, region, stage, target_regions, error) -> None:
        self._record(DeployResult.UNSTABLE, csp, track, step, region_deploy_type, region, stage, target_regions)

    def flush_track(self, logger, track) -> dict[str, UpdateRegionalStatusPayload]:
        """Summarise and forget every recorded step of ``track``."""
        logger = logger if logger is not None else _log
        steps: dict[str, UpdateRegionalStatusPayload] = {}
        prefix = f"#{track}#"

        if not self.step_deployments:
            logger.warning("FlushTrack: No steps to flush for track")

        flushed = [key for key in self.step_deployments if key.startswith(prefix)]
        for key in flushed:
            result = self.step_deployments[key]
            payload = steps.get(result.account_step_deployment_id)
            if payload is None:
                payload = UpdateRegionalStatusPayload(
                    account_step_deployment_id=result.account_step_deployment_id,
                    target_regions=result.target_regions,
                    deployment_phase=str(DeployPhase.REGIONAL_POST_DEPLOY),
                    csp=result.csp,
                )
                steps[result.account_step_deployment_id] = payload
            payload.executions.append(result)
            if result.result not in (DeployResult.SUCCESS, DeployResult.IN_PROGRESS):
                payload.failed_regions.append(f"{result.region_deploy_type}/{result.region}")

        for step_id, payload in steps.items():
            failed_count = len(payload.failed_regions)
            if failed_count >= len(payload.target_regions):
                payload.result = str(DeployResult.FAIL)
            elif failed_count > 0:
                payload.result = str(DeployResult.UNSTABLE)
            else:
                payload.result = str(DeployResult.SUCCESS)

            include_regional = False
            include_primary = False
            primary_region = ""
            failures = []
            for execution in payload.executions:
                failed = execution.result in (DeployResult.FAIL, DeployResult.UNSTABLE)
                if execution.region_deploy_type == "regional":
                    include_regional = True
                elif execution.region_deploy_type == "primary":
                    include_primary = True
                    primary_region = execution.region
                else:
                    continue
                if failed:
                    failures.append(f"{execution.region_deploy_type}/{execution.region}")

            message = f"{payload.result}:"
            if include_primary:
                message += f" Primary resources applied to {primary_region}."
            if include_regional:
                message += f"  Regional resources applied to {', '.join(payload.target_regions)}."
            else:
                message += "  No regional resources for step."
            if failures:
                message += f"  Failed executions: {', '.join(failures)}"
            payload.result_message += message

            logger.info("%s: %s", step_id, payload.result_message)

        for key in flushed:
            del self.step_deployments[key]
        self.in_progress = {key for key in self.in_progress if not key.startswith(prefix)}

        return steps