# runiac

runiac works with infrastructure as code that is laid out as *tracks* made of
*steps*. The steps of a track are run in order of their progression level.
Each step is deployed first to a primary region. If it has regional resources,
it is then deployed to each regional region. A runner carries out the steps.

The package has two parts:

- a command, `runiac`, that builds a project container and starts a
  deployment inside it;
- a library for reading configuration, discovering tracks and steps, and
  running a track's steps within one region.

## Installation

```
pip install .
```

## Project layout

```
runiac.yml                 optional configuration file
step1_network/             steps of the default (top-level) track
tracks/
  _pretrack/
    step1_account/
  logging/
    step1_bucket/
      tests/tests.test     step tests
      regional/            resources applied once per regional region
        tests/tests.test   regional step tests
    step2_stream/
```

- **Step directories.** A step directory is named `step{progression}_{name}`.
  The progression is the single digit after `step`.
- **Step identifiers.** A step's identifier is `{track}/{name}`. Steps of the
  top-level track use `default/{name}`.
- **Default track.** If `*.tf` files sit at the top level, the top-level step
  folders are copied into `tracks/default/`.

## Configuration

`runiac.config.get_config(environ, search_path)` builds a `Config`:

1. It reads `runiac.json`, `runiac.yaml` or `runiac.yml` from `search_path`.
2. It then applies `RUNIAC_<KEY>` environment variables, which take precedence.
3. It checks the result with `validate_config`.

A missing file is not an error. An unreadable file, a value that cannot be
decoded, or a failed check raises `ConfigError`.

| Setting            | Meaning                                                   | Default   |
|--------------------|-----------------------------------------------------------|-----------|
| `primary_region`   | region for primary deployments (required)                 |           |
| `runner`           | `terraform` or `arm` (required)                           |           |
| `regional_regions` | comma-separated regions for the `regional/` resources     |           |
| `account_id`       | cloud account to deploy to                                |           |
| `environment`      | environment name                                          |           |
| `namespace`        | namespace for the run                                     |           |
| `project`          | project name                                              | `runiac`  |
| `deployment_ring`  | deployment ring                                           |           |
| `step_whitelist`   | comma-separated step identifiers; when set only these run | all steps |
| `dry_run`          | stop before applying changes                              | `false`   |
| `self_destroy`     | destroy again after deploying                             | `false`   |
| `max_retries`      | retries for a step                                        | `3`       |
| `max_test_retries` | retries for step tests                                    | `2`       |
| `log_level`        | log level                                                 | `info`    |

## The `runiac` command

```
runiac deploy -a my-account -p centralus -r centralus -r eastus2 --local
```

### What `runiac deploy` does

1. Writes `.runiac/Dockerfile` and `.runiac/.dockerignore`.
2. Builds the project container, tagged with the `project` setting from
   `runiac.yml`.
3. Runs the container and passes the options in as `RUNIAC_*` environment
   variables.
4. Forwards every environment variable that starts with `TF_VAR_`, `ARM_`,
   `RUNIAC_` or `AWS_` into the container.
5. Mounts cloud CLI credentials and local state from `.runiac/`.

### Options

| Option | Effect |
|--------|--------|
| `-a, --account` | target cloud account |
| `-e, --environment` | target environment |
| `-v, --version` | version of the code being deployed |
| `-p, --primary-regions` | primary regions; repeatable, the first is used |
| `-r, --regional-regions` | regional regions; repeatable |
| `-s, --steps` | only run these steps, e.g. `-s logging/bucket`; comma separated or repeated |
| `--dry-run`, `--self-destroy` | passed on to the deployment |
| `--log-level` | log level inside the container |
| `--interactive` | run the container interactively |
| `-d, --deployment-ring` | deployment ring |
| `--local` | namespace from the user name, deployment ring `local` |
| `--pull-request ID` | namespace `ID`, deployment ring `pr` |
| `--runner` | `terraform` (default) or `arm` |
| `-c, --container` | container setting; also read from `runiac.yml` |
| `-f, --dockerfile` | container setting; also read from `runiac.yml` |
| `--container-engine` | container setting; also read from `runiac.yml` |

The three container settings are read from `runiac.yml` as `container`,
`dockerfile` and `container_engine`, or from the environment variables
`CONTAINER`, `DOCKERFILE` and `CONTAINER_ENGINE`. The command line takes
precedence over both.

### Printing the version

```
runiac version
```

This prints the version of the tool.

## Using the library

```python
import os

from runiac.config import ConfigError, get_config
from runiac.track_discovery import gather_tracks
from runiac.cli import sanitize_machine_name

try:
    config = get_config(os.environ, ".")
    tracks = gather_tracks(config, ".")
except ConfigError as err:
    print(f"invalid configuration: {err}")

sanitize_machine_name("domain\\user")   # "domain_user"
```

### Configuration and discovery

- **`runiac.config`** holds the data classes. These are `Config`, `Step`,
  `StepExecution`, `StepOutput` and `StepTestOutput`, together with the
  `RegionDeployType` and `DeployResult` enums. It also defines the `Stepper`
  and `RunnerPlugin` interfaces.
- **`runiac.track_discovery`** discovers tracks and steps:
  - `gather_tracks` finds the tracks;
  - `read_track` reads the steps of one track;
  - `step_whitelisted` tells whether a step identifier is in the whitelist.

### Running steps

- **`runiac.steps`** handles runners and step executions:
  - `register_runner(name, factory)` makes a `Stepper` available under a
    runner name, and `determine_runner` looks one up.
  - `init_execution` prepares an execution. Regional executions get their
    own copy of `regional/`, and the step parameters are built for them.
  - `execute_step`, `execute_step_tests` and `execute_step_destroy` call the
    stepper.
- **`runiac.track_regions`** runs one track within one region:
  - `execute_deploy_track_region` runs the steps progression by progression.
    Steps of a level run concurrently, and tests run in the background.
    Later levels are skipped after a failure, and regional steps are skipped
    after a primary failure.
  - `execute_destroy_track_region` tears the steps down in reverse order.
  - `append_track_output` passes step outputs on to later steps as
    `{step}-{variable}`.

### Supporting modules

- **`runiac.deployment_status.StepDeploymentRecorder`** records step results.
  Its `flush_track` summarises each step across its regions.
- **`runiac.retry.do_with_retry`** retries an action. It raises
  `MaxRetriesExceeded` if every attempt fails.
- **`runiac.command`** runs an external command while logging and capturing
  its output: `run_command`, `run_command_and_get_output` and
  `run_command_and_get_stdout`. It raises `CommandFailed` on a non-zero exit.
- **`runiac.fileutil.copy_file`** copies a file. It tries a hard link first
  and copies the contents if that fails.
- **`runiac.logformat`** provides logging support:
  - `RuniacFormatter` formats records as compact, optionally coloured text;
  - `FieldsAdapter` attaches fields such as `track`, `step` and `region` to
    log records.

## What the package does not do

- **No complete deployment run.** The package has no command that runs every
  track of a project. It does not run a `_pretrack` first, run tracks in
  parallel across all regions, or destroy again after `self_destroy`. It does
  not print an overall run summary. Only the per-region steps are provided;
  you put them together yourself.
- **No built-in runners.** No `terraform` or `arm` stepper ships with the
  package. Until one is added with `register_runner`, a step has no runner.
  Running such a step records it as failed with "no runner configured".