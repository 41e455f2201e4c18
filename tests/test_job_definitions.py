import pytest

from renovate_operator.api import (
    RenovateJob,
    RenovateJobMetadata,
    RenovateJobSecurityContext,
    RenovateJobServiceAccount,
    RenovateJobSpec,
)
from renovate_operator.config import ConfigItemDescription, initialize_config_module
from renovate_operator.job_definitions import (
    get_auto_mount_service_account_token,
    get_container_security_context,
    get_default_image_pull_secrets,
    get_dns_policy,
    get_job_backoff_limit,
    get_job_labels,
    get_job_timeout_seconds,
    get_job_ttl_seconds_after_finished,
    get_pod_security_context,
    get_service_account_name,
    merge_env_vars,
    new_discovery_job,
    new_renovate_job,
)
from renovate_operator.job_manager import JobType

_CONFIG_KEYS = (
    "JOB_TIMEOUT_SECONDS",
    "JOB_TTL_SECONDS_AFTER_FINISHED",
    "JOB_BACKOFF_LIMIT",
    "IMAGE_PULL_SECRETS",
)

DEFAULT_POD_SECURITY_CONTEXT = {
    "runAsUser": 12021,
    "runAsGroup": 12021,
    "fsGroup": 12021,
    "runAsNonRoot": True,
    "seccompProfile": {"type": "RuntimeDefault"},
}

DEFAULT_CONTAINER_SECURITY_CONTEXT = {
    "runAsUser": 12021,
    "runAsGroup": 12021,
    "runAsNonRoot": True,
    "readOnlyRootFilesystem": False,
    "privileged": False,
    "allowPrivilegeEscalation": False,
    "seccompProfile": {"type": "RuntimeDefault"},
    "capabilities": {"drop": ["ALL"]},
}


def _configure(monkeypatch, **defaults):
    for key in _CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    initialize_config_module(
        [ConfigItemDescription(key=key, optional=True, default=value) for key, value in defaults.items()]
    )


def _container(job):
    containers = job["spec"]["template"]["spec"]["containers"]
    assert len(containers) == 1
    return containers[0]


def _pod_spec(job):
    return job["spec"]["template"]["spec"]


def _env_value(container, name):
    matches = [env["value"] for env in container.get("env", []) if env["name"] == name]
    assert matches, f"env var {name} missing"
    return matches[0]


def _full_job():
    return RenovateJob(
        name="rj",
        namespace="ns",
        spec=RenovateJobSpec(
            image="img",
            secret_ref="sref",
            discovery_filter="org/*",
            discover_topics="renovate",
            metadata=RenovateJobMetadata(labels={"a": "b"}),
            extra_volumes=[{"name": "extra-vol", "emptyDir": {}}],
            extra_volume_mounts=[{"name": "extra-vol", "mountPath": "/extra"}],
            extra_env=[{"name": "LOG_FORMAT", "value": "console"}],
            service_account=RenovateJobServiceAccount(
                automount_service_account_token=True, name="test"
            ),
            node_selector={"disktype": "ssd"},
            tolerations=[
                {"key": "key1", "operator": "Equal", "value": "value1", "effect": "NoSchedule"}
            ],
            affinity={
                "nodeAffinity": {
                    "requiredDuringSchedulingIgnoredDuringExecution": {
                        "nodeSelectorTerms": [
                            {
                                "matchExpressions": [
                                    {
                                        "key": "kubernetes.io/e2e-az-name",
                                        "operator": "In",
                                        "values": ["e2e-az1", "e2e-az2"],
                                    }
                                ]
                            }
                        ]
                    }
                }
            },
            topology_spread_constraints=[
                {
                    "maxSkew": 1,
                    "topologyKey": "kubernetes.io/hostname",
                    "whenUnsatisfiable": "ScheduleAnyway",
                }
            ],
            image_pull_secrets=[{"name": "my-pull-secret"}],
            resources={"limits": {"cpu": "100m", "memory": "128Mi"}},
            security_context=RenovateJobSecurityContext(
                pod={"runAsUser": 15000}, container={"runAsUser": 16000}
            ),
        ),
    )


def test_security_context_helpers_defaults():
    spec = RenovateJobSpec()
    assert get_pod_security_context(spec) == DEFAULT_POD_SECURITY_CONTEXT
    assert get_container_security_context(spec) == DEFAULT_CONTAINER_SECURITY_CONTEXT
    assert get_auto_mount_service_account_token(spec) is False
    assert get_service_account_name(spec) == ""


def test_security_context_helpers_custom():
    spec = RenovateJobSpec(
        security_context=RenovateJobSecurityContext(pod={"runAsUser": 1}, container={"runAsUser": 2}),
        service_account=RenovateJobServiceAccount(automount_service_account_token=True, name="sa"),
    )
    assert get_pod_security_context(spec) == {"runAsUser": 1}
    assert get_container_security_context(spec) == {"runAsUser": 2}
    assert get_auto_mount_service_account_token(spec) is True
    assert get_service_account_name(spec) == "sa"


def test_dns_policy_defaults_to_cluster_first():
    assert get_dns_policy(RenovateJobSpec()) == "ClusterFirst"


def test_dns_policy_from_spec():
    assert get_dns_policy(RenovateJobSpec(dns_policy="ClusterFirst")) == "ClusterFirst"
    assert get_dns_policy(RenovateJobSpec(dns_policy="Default")) == "Default"


def test_new_jobs_with_settings(monkeypatch):
    _configure(monkeypatch, JOB_TIMEOUT_SECONDS="10", JOB_TTL_SECONDS_AFTER_FINISHED="360")
    job = _full_job()

    dj = new_discovery_job(job)
    dc = _container(dj)
    assert dj["metadata"]["generateName"] == "rj-discovery-6987b484"
    assert "name" not in dj["metadata"]
    assert dj["metadata"]["namespace"] == "ns"
    for labels in (dj["metadata"]["labels"], dj["spec"]["template"]["metadata"]["labels"]):
        assert labels["a"] == "b"
        assert labels["renovate-operator.mogenius.com/job-type"] == "discovery"
        assert labels["renovate-operator.mogenius.com/job-name"] == "rj-discovery-6987b484"
    assert dc["image"] == "img"
    assert _pod_spec(dj)["restartPolicy"] == "OnFailure"
    assert dj["spec"]["activeDeadlineSeconds"] == 10
    assert "ttlSecondsAfterFinished" not in dj["spec"]
    assert dc["env"] == [
        {"name": "LOG_FORMAT", "value": "console"},
        {"name": "NODE_NO_WARNINGS", "value": "1"},
        {"name": "RENOVATE_AUTODISCOVER_FILTER", "value": "org/*"},
        {"name": "RENOVATE_AUTODISCOVER_TOPICS", "value": "renovate"},
    ]
    assert dc["envFrom"] == [{"secretRef": {"name": "sref"}}]
    assert dc["volumeMounts"] == [
        {"name": "tmp", "mountPath": "/tmp"},
        {"name": "extra-vol", "mountPath": "/extra"},
    ]
    assert [v["name"] for v in _pod_spec(dj)["volumes"]] == ["tmp", "extra-vol"]
    assert _pod_spec(dj)["serviceAccountName"] == "test"
    assert _pod_spec(dj)["automountServiceAccountToken"] is True
    assert _pod_spec(dj)["securityContext"] == {"runAsUser": 15000}
    assert dc["securityContext"] == {"runAsUser": 16000}
    assert _pod_spec(dj)["imagePullSecrets"] == [{"name": "my-pull-secret"}]
    assert _pod_spec(dj)["affinity"] == job.spec.affinity
    assert _pod_spec(dj)["nodeSelector"] == {"disktype": "ssd"}
    assert _pod_spec(dj)["tolerations"] == job.spec.tolerations
    assert _pod_spec(dj)["topologySpreadConstraints"] == job.spec.topology_spread_constraints

    rj = new_renovate_job(job, "proj")
    rc = _container(rj)
    assert rj["metadata"]["generateName"] == "rj-proj-701b9b0a"
    assert "name" not in rj["metadata"]
    assert rj["metadata"]["namespace"] == "ns"
    for labels in (rj["metadata"]["labels"], rj["spec"]["template"]["metadata"]["labels"]):
        assert labels["a"] == "b"
        assert labels["renovate-operator.mogenius.com/job-type"] == "executor"
        assert labels["renovate-operator.mogenius.com/job-name"] == "rj-proj-701b9b0a"
    assert rc["image"] == "img"
    assert rc["command"] == ["renovate"]
    assert rc["args"] == ["--base-dir", "/tmp", "proj"]
    assert _pod_spec(rj)["restartPolicy"] == "OnFailure"
    assert rj["spec"]["activeDeadlineSeconds"] == 10
    assert rj["spec"]["ttlSecondsAfterFinished"] == 360
    assert _env_value(rc, "LOG_FORMAT") == "console"
    assert rc["envFrom"] == [{"secretRef": {"name": "sref"}}]
    assert [m["name"] for m in rc["volumeMounts"]] == ["tmp", "extra-vol"]
    assert [v["name"] for v in _pod_spec(rj)["volumes"]] == ["tmp", "extra-vol"]
    assert _pod_spec(rj)["serviceAccountName"] == "test"
    assert _pod_spec(rj)["automountServiceAccountToken"] is True
    assert _pod_spec(rj)["securityContext"] == {"runAsUser": 15000}
    assert rc["securityContext"] == {"runAsUser": 16000}
    assert _pod_spec(rj)["imagePullSecrets"] == [{"name": "my-pull-secret"}]
    assert _pod_spec(rj)["affinity"] == job.spec.affinity
    assert _pod_spec(rj)["nodeSelector"] == {"disktype": "ssd"}
    assert _pod_spec(rj)["tolerations"] == job.spec.tolerations
    assert _pod_spec(rj)["topologySpreadConstraints"] == job.spec.topology_spread_constraints


def test_new_jobs_without_settings(monkeypatch):
    _configure(monkeypatch, JOB_TIMEOUT_SECONDS="10")
    job = RenovateJob(name="nofilter", namespace="ns", spec=RenovateJobSpec(image="renovate:dev"))

    dj = new_discovery_job(job)
    dc = _container(dj)
    assert dj["metadata"]["generateName"] == "nofilter-discovery-3006fe8c"
    assert dj["metadata"]["namespace"] == "ns"
    assert dc["image"] == "renovate:dev"
    assert "ttlSecondsAfterFinished" not in dj["spec"]
    assert _env_value(dc, "LOG_FORMAT") == "json"
    names = [env["name"] for env in dc["env"]]
    assert "RENOVATE_AUTODISCOVER_FILTER" not in names
    assert "RENOVATE_AUTODISCOVER_TOPICS" not in names
    assert dc.get("envFrom", []) == []
    assert dc["volumeMounts"] == [{"name": "tmp", "mountPath": "/tmp"}]
    assert [v["name"] for v in _pod_spec(dj)["volumes"]] == ["tmp"]
    assert _pod_spec(dj).get("serviceAccountName", "") == ""
    assert _pod_spec(dj)["automountServiceAccountToken"] is False
    assert _pod_spec(dj)["securityContext"] == DEFAULT_POD_SECURITY_CONTEXT
    assert dc["securityContext"] == DEFAULT_CONTAINER_SECURITY_CONTEXT
    assert _pod_spec(dj).get("imagePullSecrets", []) == []
    for key in ("affinity", "nodeSelector", "tolerations", "topologySpreadConstraints"):
        assert key not in _pod_spec(dj)

    rj = new_renovate_job(job, "myproj")
    rc = _container(rj)
    assert rj["metadata"]["generateName"] == "nofilter-myproj-496e220d"
    assert rj["metadata"]["namespace"] == "ns"
    assert rc["image"] == "renovate:dev"
    assert "ttlSecondsAfterFinished" not in rj["spec"]
    assert rc["env"] == [{"name": "LOG_FORMAT", "value": "json"}]
    assert rc.get("envFrom", []) == []
    assert rc["volumeMounts"] == [{"name": "tmp", "mountPath": "/tmp"}]
    assert [v["name"] for v in _pod_spec(rj)["volumes"]] == ["tmp"]
    assert _pod_spec(rj)["automountServiceAccountToken"] is False
    assert _pod_spec(rj)["securityContext"] == DEFAULT_POD_SECURITY_CONTEXT
    assert rc["securityContext"] == DEFAULT_CONTAINER_SECURITY_CONTEXT
    assert _pod_spec(rj).get("imagePullSecrets", []) == []
    for key in ("affinity", "nodeSelector", "tolerations", "topologySpreadConstraints"):
        assert key not in _pod_spec(rj)


def test_default_image_pull_secrets_applied_when_spec_has_none(monkeypatch):
    _configure(
        monkeypatch,
        JOB_TIMEOUT_SECONDS="10",
        IMAGE_PULL_SECRETS='[{"name":"default-secret"}]',
    )
    job = RenovateJob(name="rj", namespace="ns", spec=RenovateJobSpec(image="img"))
    assert _pod_spec(new_discovery_job(job))["imagePullSecrets"] == [{"name": "default-secret"}]
    assert _pod_spec(new_renovate_job(job, "proj"))["imagePullSecrets"] == [{"name": "default-secret"}]


def test_spec_and_default_image_pull_secrets_combined(monkeypatch):
    _configure(
        monkeypatch,
        JOB_TIMEOUT_SECONDS="10",
        IMAGE_PULL_SECRETS='[{"name":"default-secret"}]',
    )
    job = RenovateJob(
        name="rj",
        namespace="ns",
        spec=RenovateJobSpec(image="img", image_pull_secrets=[{"name": "spec-secret"}]),
    )
    expected = [{"name": "spec-secret"}, {"name": "default-secret"}]
    assert _pod_spec(new_discovery_job(job))["imagePullSecrets"] == expected
    assert _pod_spec(new_renovate_job(job, "proj"))["imagePullSecrets"] == expected
    assert job.spec.image_pull_secrets == [{"name": "spec-secret"}]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("", []),
        ("[]", []),
        ("not json", []),
        ('{"name":"x"}', []),
        ('[{"name":"a"},{"name":"b"}]', [{"name": "a"}, {"name": "b"}]),
    ],
)
def test_default_image_pull_secrets_parsing(monkeypatch, raw, expected):
    _configure(monkeypatch, IMAGE_PULL_SECRETS=raw)
    assert get_default_image_pull_secrets() == expected


def test_timeout_falls_back_on_invalid_value(monkeypatch):
    _configure(monkeypatch, JOB_TIMEOUT_SECONDS="abc")
    assert get_job_timeout_seconds() == 1800


def test_backoff_limit_parsed_and_fallback(monkeypatch):
    _configure(monkeypatch, JOB_BACKOFF_LIMIT="3")
    assert get_job_backoff_limit() == 3
    _configure(monkeypatch)
    assert get_job_backoff_limit() == 1800


@pytest.mark.parametrize("raw, expected", [("-1", None), ("360", 360), ("abc", None), ("0", 0)])
def test_ttl_seconds_after_finished(monkeypatch, raw, expected):
    _configure(monkeypatch, JOB_TTL_SECONDS_AFTER_FINISHED=raw)
    assert get_job_ttl_seconds_after_finished() == expected


def test_merge_env_vars_prefers_extra_env():
    extra = [{"name": "A", "value": "extra"}, {"name": "C", "value": "c"}]
    predefined = [{"name": "A", "value": "default"}, {"name": "B", "value": "b"}]
    assert merge_env_vars(extra, predefined) == [
        {"name": "A", "value": "extra"},
        {"name": "C", "value": "c"},
        {"name": "B", "value": "b"},
    ]


def test_job_labels_overlay_metadata():
    labels = get_job_labels(
        RenovateJobMetadata(labels={"team": "infra"}), JobType.EXECUTOR, "job-x"
    )
    assert labels == {
        "renovate-operator.mogenius.com/job-type": "executor",
        "renovate-operator.mogenius.com/job-name": "job-x",
        "team": "infra",
    }


def test_job_labels_without_metadata():
    assert get_job_labels(None, JobType.DISCOVERY, "d") == {
        "renovate-operator.mogenius.com/job-type": "discovery",
        "renovate-operator.mogenius.com/job-name": "d",
    }


def test_annotations_applied_to_job_and_template(monkeypatch):
    _configure(monkeypatch, JOB_TIMEOUT_SECONDS="10")
    job = RenovateJob(
        name="rj",
        namespace="ns",
        spec=RenovateJobSpec(metadata=RenovateJobMetadata(annotations={"note": "x"})),
    )
    built = new_renovate_job(job, "p")
    assert built["metadata"]["annotations"] == {"note": "x"}
    assert built["spec"]["template"]["metadata"]["annotations"] == {"note": "x"}