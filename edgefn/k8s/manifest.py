"""
Knative Service manifest builder.

Turns a validated function spec into the ``serving.knative.dev/v1`` Service
body submitted by the orchestration client. Nothing here touches the
network: the kubernetes client models are only used to assemble the
container and affinity blocks before they are serialized to plain dicts.
"""

import math
import re
from typing import Any, Dict, Optional

from kubernetes import client

from ..core.exceptions import ValidationError
from ..schemas.function import AutoscalingConfig, FunctionSpec

SUPPORTED_RUNTIMES = ("node18", "python311", "go121", "rust")

MEMORY_BOUNDS = (128, 3008)  # MB
TIMEOUT_BOUNDS = (30, 900)  # seconds
CONCURRENCY_BOUNDS = (1, 1000)

DEFAULT_MIN_SCALE = 0
DEFAULT_MAX_SCALE = 1000

CONTAINER_PORT = 8080
KNATIVE_GROUP = "serving.knative.dev"
KNATIVE_VERSION = "v1"
KNATIVE_PLURAL = "services"

ANNOTATION_MIN_SCALE = "autoscaling.knative.dev/minScale"
ANNOTATION_MAX_SCALE = "autoscaling.knative.dev/maxScale"
ANNOTATION_TARGET = "autoscaling.knative.dev/target"
ANNOTATION_BURST = "autoscaling.knative.dev/targetBurstCapacity"

# "function-" prefix plus name must fit a 63 character DNS label
_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]{0,52}[a-z0-9])?$")

_serializer = client.ApiClient()


def _check_bounds(field: str, value: int, bounds) -> None:
    low, high = bounds
    if value < low or value > high:
        raise ValidationError(f"{field} must be between {low} and {high}, got {value}")


def validate_function_spec(spec: FunctionSpec) -> None:
    """Reject a spec before any image build or cluster call happens."""
    if spec.runtime not in SUPPORTED_RUNTIMES:
        raise ValidationError(
            f"Unsupported runtime: {spec.runtime}. Supported runtimes: {', '.join(SUPPORTED_RUNTIMES)}"
        )
    if not _NAME_RE.match(spec.name or ""):
        raise ValidationError(
            f"Invalid function name '{spec.name}': use lowercase letters, digits and '-' (max 54 chars)"
        )
    _check_bounds("memory", spec.memory, MEMORY_BOUNDS)
    _check_bounds("timeout", spec.timeout, TIMEOUT_BOUNDS)
    _check_bounds("concurrency", spec.concurrency, CONCURRENCY_BOUNDS)
    if spec.autoscaling is not None:
        validate_autoscaling(spec.autoscaling)


def validate_autoscaling(config: AutoscalingConfig) -> None:
    if config.min_replicas < 0:
        raise ValidationError(f"min_replicas must be >= 0, got {config.min_replicas}")
    if config.min_replicas > config.max_replicas:
        raise ValidationError(
            f"min_replicas ({config.min_replicas}) must not exceed max_replicas ({config.max_replicas})"
        )
    if config.target_concurrency <= 0:
        raise ValidationError(f"target_concurrency must be > 0, got {config.target_concurrency}")
    if config.target_rps <= 0:
        raise ValidationError(f"target_rps must be > 0, got {config.target_rps}")


def cpu_limit_millicores(memory: int) -> int:
    # ~1 CPU per 256MB
    return math.ceil(memory / 256) * 1000


def cpu_request_millicores(memory: int) -> int:
    return math.ceil(memory / 512) * 1000


def memory_request_mb(memory: int) -> int:
    # ceil(memory * 0.8) without float rounding error
    return -(-memory * 4 // 5)


def compute_resources(memory: int) -> Dict[str, Dict[str, str]]:
    return {
        "limits": {
            "memory": f"{memory}Mi",
            "cpu": f"{cpu_limit_millicores(memory)}m",
        },
        "requests": {
            "memory": f"{memory_request_mb(memory)}Mi",
            "cpu": f"{cpu_request_millicores(memory)}m",
        },
    }


def scaling_annotations(spec: FunctionSpec, config: Optional[AutoscalingConfig] = None) -> Dict[str, str]:
    """Knative autoscaler annotations; an explicit config wins over defaults."""
    config = config or spec.autoscaling
    if config is None:
        return {
            ANNOTATION_MIN_SCALE: str(DEFAULT_MIN_SCALE),
            ANNOTATION_MAX_SCALE: str(DEFAULT_MAX_SCALE),
            ANNOTATION_TARGET: str(spec.concurrency),
        }
    return autoscaling_annotations(config)


def autoscaling_annotations(config: AutoscalingConfig) -> Dict[str, str]:
    return {
        ANNOTATION_MIN_SCALE: str(config.min_replicas),
        ANNOTATION_MAX_SCALE: str(config.max_replicas),
        ANNOTATION_TARGET: str(config.target_concurrency),
        ANNOTATION_BURST: str(config.target_rps),
    }


def autoscaling_patch(config: AutoscalingConfig) -> Dict[str, Any]:
    """Merge patch touching only the revision template annotations."""
    return {
        "spec": {
            "template": {
                "metadata": {
                    "annotations": autoscaling_annotations(config)
                }
            }
        }
    }


def _anti_affinity(name: str) -> client.V1Affinity:
    # Soft spread across nodes
    return client.V1Affinity(
        pod_anti_affinity=client.V1PodAntiAffinity(
            preferred_during_scheduling_ignored_during_execution=[
                client.V1WeightedPodAffinityTerm(
                    weight=100,
                    pod_affinity_term=client.V1PodAffinityTerm(
                        label_selector=client.V1LabelSelector(
                            match_expressions=[
                                client.V1LabelSelectorRequirement(
                                    key="function-name",
                                    operator="In",
                                    values=[name],
                                )
                            ]
                        ),
                        topology_key="kubernetes.io/hostname",
                    ),
                )
            ]
        )
    )


def _container(spec: FunctionSpec, image_ref: str) -> client.V1Container:
    resources = compute_resources(spec.memory)
    return client.V1Container(
        name="function",
        image=image_ref,
        ports=[client.V1ContainerPort(container_port=CONTAINER_PORT)],
        env=[
            client.V1EnvVar(name=key, value=str(value))
            for key, value in (spec.environment or {}).items()
        ],
        resources=client.V1ResourceRequirements(
            limits=resources["limits"],
            requests=resources["requests"],
        ),
        liveness_probe=client.V1Probe(
            http_get=client.V1HTTPGetAction(path="/health", port=CONTAINER_PORT),
            initial_delay_seconds=5,
            period_seconds=10,
        ),
    )


def build_manifest(project_id: str, spec: FunctionSpec, image_ref: str) -> Dict[str, Any]:
    """
    Build the Knative Service body for a function.

    Args:
        project_id: Owning project, mapped to namespace ``project-<id>``
        spec: Function definition, validated here before anything is built
        image_ref: Image produced by the build collaborator

    Returns:
        Manifest dict ready for ``create_namespaced_custom_object``
    """
    validate_function_spec(spec)

    annotations = scaling_annotations(spec)
    annotations["client.knative.dev/user-image"] = image_ref
    labels = {"project-id": project_id, "function-name": spec.name}

    return {
        "apiVersion": f"{KNATIVE_GROUP}/{KNATIVE_VERSION}",
        "kind": "Service",
        "metadata": {
            "name": f"function-{spec.name}",
            "namespace": f"project-{project_id}",
            "labels": labels,
        },
        "spec": {
            "template": {
                "metadata": {
                    "labels": dict(labels),
                    "annotations": annotations,
                },
                "spec": {
                    "containerConcurrency": spec.concurrency,
                    "timeoutSeconds": spec.timeout,
                    "containers": [_serializer.sanitize_for_serialization(_container(spec, image_ref))],
                    "affinity": _serializer.sanitize_for_serialization(_anti_affinity(spec.name)),
                },
            },
            "traffic": [{"percent": 100, "latestRevision": True}],
        },
    }
