# renovate_operator

Building blocks for running Renovate against many repositories as Kubernetes
jobs. A `RenovateJob` resource describes a schedule, a Renovate image and how
projects are discovered. The package turns that description into discovery
and executor job manifests, tracks the status of every project, and reads
Renovate's JSON logs to report results.

## Modules

- `renovate_operator.api`: the `RenovateJob` resource with its spec and status
  types, and `RenovateProjectStatus` (`scheduled`, `running`, `completed`,
  `failed`). `RenovateJob.to_dict` and `RenovateJob.from_dict` convert to and
  from Kubernetes JSON documents.
- `renovate_operator.config`: settings read once from environment variables,
  with defaults and validation (`initialize_config_module`, `get_value`).
- `renovate_operator.job_names`: Kubernetes-safe job names
  (`executor_job_name`, `discovery_job_name`, and the older
  `legacy_executor_job_name`, `legacy_discovery_job_name`).
- `renovate_operator.job_definitions`: Job manifests for discovery and
  executor runs (`new_discovery_job`, `new_renovate_job`) and the defaults they
  use (security contexts, DNS policy, timeouts, image pull secrets).
- `renovate_operator.project_status`: the allowed transitions of a project's
  status (`get_update_status_for_project`).
- `renovate_operator.log_parser`: warnings and the final result of a Renovate
  run from its NDJSON log (`parse_renovate_logs`).
- `renovate_operator.pod_logs`: the discovered repository list from discovery
  output (`parse_discovered_projects`).
- `renovate_operator.job_helper`: project status and readable run time of a
  Job (`get_job_status`, `human_duration`).
- `renovate_operator.job_manager`: the in-memory `KubeClient` and helpers for
  the operator's labelled jobs (`get_job_by_label`,
  `create_job_with_generation`, `delete_job`, `get_last_job_log`).
- `renovate_operator.client_provider`: the process-wide `ClientProvider`
  (`set_static_client_provider`, `static_client_provider`).
- `renovate_operator.renovate_job_manager`: `RenovateJobManager`, which reads
  and updates `RenovateJob` status, reconciles project lists and checks webhook
  tokens and HMAC signatures.
- `renovate_operator.discovery_agent`: `DiscoveryAgent`, which creates a
  discovery job, waits for it and returns the projects it found.
- `renovate_operator.executor`: `RenovateExecutor`, which starts executor jobs
  for scheduled projects up to the job's `parallelism` and records the outcome
  of finished ones.
- `renovate_operator.controller`: `RenovateJobReconciler` and
  `create_scheduler`, which keep one schedule per `RenovateJob`.
- `renovate_operator.health`: health state of the scheduler and executor
  (`HealthCheck`, `ApplicationHealth.to_dict`).

## Configuration

```python
from renovate_operator.config import ConfigItemDescription, initialize_config_module, get_value

initialize_config_module([
    ConfigItemDescription(key="JOB_TIMEOUT_SECONDS", optional=True, default="1800"),
    ConfigItemDescription(key="JOB_BACKOFF_LIMIT", optional=True, default="1"),
    ConfigItemDescription(key="IMAGE_PULL_SECRETS", optional=True, default="[]"),
])

print(get_value("JOB_TIMEOUT_SECONDS"))
```

A required setting that is missing, or a value whose validator raises
`ValueError`, raises `ConfigError`. `get_value` returns an empty string for a
key that was never declared. The job manifests read `JOB_TIMEOUT_SECONDS`,
`JOB_BACKOFF_LIMIT`, `JOB_TTL_SECONDS_AFTER_FINISHED` and
`IMAGE_PULL_SECRETS`; the executor reads `DELETE_SUCCESSFUL_JOBS`.

## Job names

```python
from renovate_operator.api import RenovateJob
from renovate_operator.job_names import executor_job_name, discovery_job_name

job = RenovateJob.from_dict({
    "metadata": {"name": "my-job", "namespace": "default"},
    "spec": {"schedule": "*/5 * * * *"},
})

executor_job_name(job, "frontend")   # 'my-job-frontend-2849ae02'
discovery_job_name(job)              # 'my-job-discovery-065009c5'
```

Names are lower-cased, `/`, `_` and `.` become `-`, and a short hash keeps
them unique after trimming to Kubernetes' length limit.

## Tracking projects

```python
from renovate_operator.api import RenovateJob, RenovateProjectStatus
from renovate_operator.job_manager import KubeClient
from renovate_operator.renovate_job_manager import RenovateJobIdentifier, RenovateJobManager
from renovate_operator.status_update import RenovateStatusUpdate

client = KubeClient()
client.create_renovate_job(RenovateJob(name="my-job", namespace="default"))

manager = RenovateJobManager(client)
job_id = RenovateJobIdentifier(name="my-job", namespace="default")
manager.reconcile_projects(job_id, ["org/a", "org/b"])     # both scheduled
manager.update_project_status(
    "org/a", job_id, RenovateStatusUpdate(status=RenovateProjectStatus.RUNNING)
)
[p.status for p in manager.get_projects_for_renovate_job(job_id)]
```

Status changes follow fixed rules: only a scheduled project can start
running, only a running project can complete or fail, and a running project
cannot be scheduled again.

## Reading Renovate logs

```python
from renovate_operator.log_parser import parse_renovate_logs

result = parse_renovate_logs(
    '{"level":40,"msg":"Dependency lookup failed"}\n'
    '{"level":30,"result":"disabled-no-config","msg":"Repository finished"}'
)
result.has_issues               # True
result.renovate_result_status   # 'No Config'
```

Any entry at level 40 (warn) or higher counts as an issue. The
`Repository finished` entry decides the result: `Disabled`,
`Onboarding Closed`, `No Config`, `Unknown`, or Renovate's own result string.

## What the package does not do

- `KubeClient` is an in-memory store of jobs, pods, secrets, pod logs and
  `RenovateJob` objects. The package has no client for a real cluster and runs
  no pods: job status, pods and their logs must be put into the client by the
  caller.
- There is no cron scheduler. `RenovateJobReconciler` needs a scheduler object
  with `add_schedule_replace_existing(expr, name, fn)` and
  `remove_schedule(name)` supplied by the caller.
- There is no command to start an operator, no HTTP server for a UI, health
  endpoint or webhooks, and no metrics store; `RenovateJobManager` and
  `RenovateExecutor` accept an optional metrics object and skip metrics
  without one.
- Reading executor and discovery logs goes through the provider installed
  with `set_static_client_provider`, which must be set first.

## Running the tests

The tests use pytest, installed with the `test` extra:

```
pip install -e .[test]
pytest
```