"""Extraction of pod specs from admission requests for supported workloads."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from trustgate.controller import AdmissionRequest, GroupVersionResource

logger = logging.getLogger(__name__)

POD_SPEC_PATH = "/spec"
TEMPLATE_SPEC_PATH = "/spec/template/spec"
CRON_JOB_SPEC_PATH = "/spec/jobTemplate/spec/template/spec"


class ObjectHasParentsError(Exception):
    """The resource being created is the child of another resource."""

    def __init__(self, message: str = "This object has parents") -> None:
        super().__init__(message)


class ObjectHasZeroReplicasError(Exception):
    """The resource being created has zero replicas."""

    def __init__(self, message: str = "This object has zero replicas") -> None:
        super().__init__(message)


class UnsupportedResourceError(Exception):
    """The admission request names a resource type that is not handled."""

    def __init__(self, resource: GroupVersionResource) -> None:
        self.resource = resource
        super().__init__(
            f'The resource "{resource}" is not supported. Make sure that you are '
            "using a supported kubectl version, and that you are using a "
            "supported Kubernetes workload type"
        )


class ServiceAccountNotFoundError(LookupError):
    """The requested service account does not exist."""

    def __init__(self, namespace: str, name: str) -> None:
        self.namespace = namespace
        self.name = name
        super().__init__(f'serviceaccounts "{name}" not found in namespace "{namespace}"')


class KubeClient:
    """An in-memory store of service accounts, keyed by namespace and name."""

    def __init__(self, service_accounts: Iterable[dict[str, Any]] = ()) -> None:
        self._service_accounts: dict[tuple[str, str], dict[str, Any]] = {}
        for account in service_accounts:
            meta = account.get("metadata", {})
            key = (meta.get("namespace", ""), meta.get("name", ""))
            self._service_accounts[key] = account

    def get_service_account(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            return self._service_accounts[(namespace, name)]
        except KeyError:
            raise ServiceAccountNotFoundError(namespace, name) from None


@dataclass(frozen=True)
class _Workload:
    spec_path: str
    checks_replicas: bool
    mutates: bool

    def pod_spec(self, obj: dict[str, Any]) -> dict[str, Any]:
        node: Any = obj
        for key in self.spec_path.strip("/").split("/"):
            node = node.get(key) if isinstance(node, dict) else None
            if node is None:
                return {}
        return node if isinstance(node, dict) else {}


_POD = _Workload(POD_SPEC_PATH, checks_replicas=False, mutates=False)
_SCALED = _Workload(TEMPLATE_SPEC_PATH, checks_replicas=True, mutates=True)
_UNSCALED = _Workload(TEMPLATE_SPEC_PATH, checks_replicas=False, mutates=True)
_CRON = _Workload(CRON_JOB_SPEC_PATH, checks_replicas=False, mutates=True)

_GVR = GroupVersionResource

_WORKLOADS: dict[GroupVersionResource, _Workload] = {
    _GVR("", "v1", "pods"): _POD,
    _GVR("", "v1", "replicationcontrollers"): _SCALED,
    _GVR("extensions", "v1beta1", "deployments"): _SCALED,
    _GVR("apps", "v1beta1", "deployments"): _SCALED,
    _GVR("apps", "v1beta2", "deployments"): _SCALED,
    _GVR("apps", "v1", "deployments"): _SCALED,
    _GVR("apps", "v1", "replicasets"): _SCALED,
    _GVR("extensions", "v1beta1", "replicasets"): _SCALED,
    _GVR("apps", "v1beta2", "replicasets"): _SCALED,
    _GVR("apps", "v1", "daemonsets"): _UNSCALED,
    _GVR("extensions", "v1beta1", "daemonsets"): _UNSCALED,
    _GVR("apps", "v1beta2", "daemonsets"): _UNSCALED,
    _GVR("apps", "v1", "statefulsets"): _SCALED,
    _GVR("apps", "v1beta1", "statefulsets"): _SCALED,
    _GVR("apps", "v1beta2", "statefulsets"): _SCALED,
    _GVR("batch", "v1", "jobs"): _UNSCALED,
    _GVR("batch", "v1beta1", "cronjobs"): _CRON,
    _GVR("batch", "v2alpha1", "cronjobs"): _CRON,
}


class KubeWrapper:
    """Helpers for applying admission behaviour to Kubernetes resources."""

    def __init__(self, client: KubeClient | None = None) -> None:
        self.client = client if client is not None else KubeClient()

    def get_pod_spec(self, request: AdmissionRequest) -> tuple[str, dict[str, Any]]:
        """Return the JSON-pointer path of the pod spec and the pod spec itself."""
        workload = _WORKLOADS.get(request.resource)
        if workload is None:
            logger.error("Resource not supported: %s", request.resource)
            raise UnsupportedResourceError(request.resource)

        obj = self.decode_object(request.object)
        if workload.checks_replicas:
            spec = obj.get("spec")
            replicas = spec.get("replicas") if isinstance(spec, dict) else None
            if replicas is not None and replicas == 0:
                raise ObjectHasZeroReplicasError()

        pod_spec = workload.pod_spec(obj)
        if workload.mutates:
            # A missing service account leaves the spec untouched.
            with contextlib.suppress(ServiceAccountNotFoundError):
                self.mutate_with_sa(request.namespace, pod_spec)
        return workload.spec_path, pod_spec

    def decode_object(self, raw: bytes | str) -> dict[str, Any]:
        """Decode a raw JSON object, refusing objects that have owners."""
        obj = json.loads(raw)
        if not isinstance(obj, dict):
            raise ValueError("object is not a JSON mapping")
        metadata = obj.get("metadata") or {}
        if metadata.get("ownerReferences"):
            raise ObjectHasParentsError()
        return obj

    def mutate_with_sa(self, namespace: str, pod_spec: dict[str, Any] | None) -> None:
        """Add the service account's image pull secrets to a spec that has none."""
        if not namespace or pod_spec is None or pod_spec.get("imagePullSecrets"):
            return
        name = pod_spec.get("serviceAccountName") or "default"
        account = self.client.get_service_account(namespace, name)
        secrets = account.get("imagePullSecrets") or []
        if secrets:
            pod_spec["imagePullSecrets"] = [
                *(pod_spec.get("imagePullSecrets") or []),
                *(dict(secret) for secret in secrets),
            ]