"""Track data structures and discovery of tracks and steps on disk."""

from __future__ import annotations

import glob
import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Any

from runiac.config import Config, RegionDeployType, Step
from runiac.steps import determine_runner

PRE_TRACK_NAME = "_pretrack"  # directory name of the track run before all others
DEFAULT_TRACK_NAME = "default"  # name of the top-level default track

STEP_PREFIX = "step"

_log = logging.getLogger(__name__)


@dataclass
class ExecutionOutput:
    """Result of running a track in one region."""

    name: str = ""
    dir: str = ""
    executed_count: int = 0
    skipped_count: int = 0
    failure_count: int = 0
    failed_test_count: int = 0
    steps: dict[str, Step] = field(default_factory=dict)
    failed_steps: list[Step] = field(default_factory=list)
    # step name -> {output variable name: value}
    step_output_variables: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass
class RegionExecution:
    """A track run in a single region and region deploy type."""

    track_name: str = ""
    track_dir: str = ""
    track_step_progressions_count: int = 0
    track_steps_with_tests_count: int = 0
    track_ordered_steps: dict[int, list[Step]] = field(default_factory=dict)
    logger: Any = None
    output: ExecutionOutput = field(default_factory=ExecutionOutput)
    region: str = ""
    region_deploy_type: RegionDeployType = RegionDeployType.PRIMARY
    primary_output: ExecutionOutput = field(default_factory=ExecutionOutput)
    default_step_output_variables: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass
class Output:
    """Result of running a track across all regions."""

    name: str = ""
    primary_step_output_variables: dict[str, dict[str, str]] = field(default_factory=dict)
    executions: list[RegionExecution] = field(default_factory=list)


@dataclass
class Execution:
    """Inputs for running one track."""

    logger: Any = None
    output: ExecutionOutput = field(default_factory=ExecutionOutput)
    default_execution_step_output_variables: dict[str, dict[str, dict[str, str]]] = field(default_factory=dict)
    pretrack_output: Output | None = None


@dataclass
class Track:
    """A delivery framework track: a group of steps run in progression order."""

    name: str = ""
    dir: str = ""
    step_progressions_count: int = 0
    steps_count: int = 0
    steps_with_tests_count: int = 0
    steps_with_regional_tests_count: int = 0
    regional_deployment: bool = False
    ordered_steps: dict[int, list[Step]] = field(default_factory=dict)
    output: Output = field(default_factory=Output)
    destroy_output: Output = field(default_factory=Output)
    is_pre_track: bool = False
    is_default_track: bool = False
    skipped: bool = False


@dataclass
class Stage:
    """Outputs of all tracks in a run, keyed by track name."""

    tracks: dict[str, Track] = field(default_factory=dict)


def step_whitelisted(whitelist: list[str], step_id: str) -> bool:
    """Return whether ``step_id`` is listed, ignoring case.

    A bare step name also matches the same step in the default track.
    """
    wanted = step_id.lower()
    return any(item.lower() == wanted or f"default/{item}".lower() == wanted for item in whitelist)


def copy_default(source: str | os.PathLike[str], destination: str | os.PathLike[str]) -> None:
    """Copy the top-level step folders of ``source`` into ``destination``."""
    os.makedirs(destination, exist_ok=True)
    with os.scandir(source) as entries:
        names = sorted((entry.name, entry.is_dir()) for entry in entries)
    for name, is_dir in names:
        if name.startswith("tracks") or not name.startswith(STEP_PREFIX):
            continue
        _log.debug("%s", name)
        src = os.path.join(source, name)
        dst = os.path.join(destination, name)
        if is_dir:
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)


def _file_exists(path: str) -> bool:
    return os.path.exists(path) and not os.path.isdir(path)


def _non_empty(path: str) -> bool:
    if os.path.isdir(path):
        with os.scandir(path) as entries:
            return any(True for _ in entries)
    if os.path.isfile(path):
        return os.path.getsize(path) > 0
    return False


def _list_dir(path: str) -> list[str]:
    try:
        return sorted(os.listdir(path))
    except OSError:
        return []


def read_track(
    config: Config,
    name: str,
    directory: str | os.PathLike[str],
    root: str | os.PathLike[str] = ".",
    logger: Any = None,
) -> tuple[Track, bool]:
    """Read a track's steps from ``directory``.

    Returns the track and whether it is included in this run. Raises OSError if
    the default track's steps cannot be copied.
    """
    logger = logger if logger is not None else _log
    directory = os.fspath(directory)
    track = Track(name=name, dir=directory)

    if name == PRE_TRACK_NAME:
        logger.debug("Pre-track found")
        track.is_pre_track = True
    elif name == DEFAULT_TRACK_NAME:
        logger.debug("Default track found")
        track.is_default_track = True

    if track.is_default_track and glob.glob(os.path.join(glob.escape(os.fspath(root)), "*.tf")):
        default_dir = os.path.join(root, "tracks", DEFAULT_TRACK_NAME)
        try:
            os.makedirs(default_dir, exist_ok=True)
            copy_default(root, default_dir)
        except OSError as err:
            logger.error("Failed to set up default track step: %s", err)
            raise

    # when neither steps nor everything are targeted, the track is left out
    if not config.step_whitelist and not config.target_all:
        logger.warning("Tracks: Skipping %s", name)
        return track, False

    highest_progression = 0
    for folder in _list_dir(directory):
        if not folder.startswith(STEP_PREFIX):
            continue
        # step folder convention is step{progressionLevel}_{stepName}
        if len(folder) < len(STEP_PREFIX) + 2:
            logger.error("Step folder %s does not follow step{progression}_{name}", folder)
            continue
        step_name = folder[len(STEP_PREFIX) + 2 :]
        if track.is_default_track:
            step_id = f"{DEFAULT_TRACK_NAME}/{step_name}"
        else:
            step_id = f"{track.name}/{step_name}"

        if not config.target_all and not step_whitelisted(config.step_whitelist, step_id):
            logger.warning("Step %s disabled. Not present in whitelist.", step_id)
            continue

        progression_char = folder[len(STEP_PREFIX)]
        try:
            progression = int(progression_char)
        except ValueError:
            logger.error("invalid step progression %r in %s", progression_char, folder)
            progression = 0

        highest_progression = max(highest_progression, progression)

        step = Step(
            progression_level=progression,
            name=step_name,
            dir=os.path.join(directory, folder),
            deploy_config=config,
            track_name=track.name,
            id=step_id,
        )
        step.tests_exist = _file_exists(os.path.join(step.dir, "tests", "tests.test"))
        step.regional_resources_exist = _non_empty(os.path.join(step.dir, "regional"))
        step.runner = determine_runner(step)
        if step.regional_resources_exist:
            step.regional_tests_exist = _file_exists(os.path.join(step.dir, "regional", "tests", "tests.test"))

        logger.info(
            "Adding Step %s. Tests Exist: %s. Regional Resources Exist: %s. Regional Tests Exist: %s.",
            step_id,
            step.tests_exist,
            step.regional_resources_exist,
            step.regional_tests_exist,
        )

        if step.regional_resources_exist:
            track.regional_deployment = True

        track.ordered_steps.setdefault(progression, []).append(step)
        track.steps_count += 1
        if step.tests_exist:
            track.steps_with_tests_count += 1
        if step.regional_tests_exist:
            track.steps_with_regional_tests_count += 1

    track.step_progressions_count = highest_progression
    return track, True


def gather_tracks(config: Config, root: str | os.PathLike[str] = ".", logger: Any = None) -> list[Track]:
    """Return every included track with at least one step found under ``root``."""
    logger = logger if logger is not None else _log
    root = os.fspath(root)
    tracks_dir = os.path.join(root, "tracks")
    tracks: list[Track] = []
    default_exists = False

    try:
        track, included = read_track(config, DEFAULT_TRACK_NAME, root, root, logger)
    except OSError:
        included = False
    if included and track.steps_count > 0:
        default_exists = True
        logger.info("Tracks: Adding default track")
        tracks.append(track)

    for name in _list_dir(tracks_dir):
        path = os.path.join(tracks_dir, name)
        if not os.path.isdir(path):
            continue
        try:
            track, included = read_track(config, name, path, root, logger)
        except OSError:
            continue
        if included and track.steps_count > 0:
            logger.info("Tracks: Adding %s", name)
            tracks.append(track)

    if default_exists and len(tracks) > 1:
        logger.warning(
            "Detected that a default track (%s) exists along with one or more explicit tracks (%s). "
            "Best practice is to migrate your default track to a named one instead.",
            root,
            tracks_dir,
        )

    return tracks