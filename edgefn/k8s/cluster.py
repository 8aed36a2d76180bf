from kubernetes import client, config
from kubernetes.client.rest import ApiException
from typing import Any, Callable, Dict, Optional
import logging
import threading

from ..k8s.manifest import KNATIVE_GROUP, KNATIVE_VERSION, KNATIVE_PLURAL

# Configure logging
logger = logging.getLogger(__name__)


class ClusterAPI:
    """
    Operations the controller needs from one cluster.
    Implementations are injected so tests can run against a fake cluster.
    """

    def create_service(self, namespace: str, manifest: Dict[str, Any]) -> None:
        raise NotImplementedError

    def get_endpoint(self, namespace: str, name: str) -> Optional[str]:
        """Return the service URL once it is ready, else None."""
        raise NotImplementedError

    def patch_service(self, namespace: str, name: str, patch: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete_service(self, namespace: str, name: str) -> None:
        raise NotImplementedError


class KnativeClusterAPI(ClusterAPI):
    """Knative Serving services through the CustomObjects API."""

    def __init__(self, api_client: client.ApiClient):
        self.custom_api = client.CustomObjectsApi(api_client)

    def create_service(self, namespace: str, manifest: Dict[str, Any]) -> None:
        self.custom_api.create_namespaced_custom_object(
            KNATIVE_GROUP,
            KNATIVE_VERSION,
            namespace,
            KNATIVE_PLURAL,
            manifest,
        )

    def get_endpoint(self, namespace: str, name: str) -> Optional[str]:
        try:
            svc = self.custom_api.get_namespaced_custom_object(
                KNATIVE_GROUP,
                KNATIVE_VERSION,
                namespace,
                KNATIVE_PLURAL,
                name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

        status = svc.get("status") or {}
        url = status.get("url")
        if not url:
            return None
        for condition in status.get("conditions") or []:
            if condition.get("type") == "Ready":
                return url if condition.get("status") == "True" else None
        return url

    def patch_service(self, namespace: str, name: str, patch: Dict[str, Any]) -> None:
        # Dict bodies go out as application/merge-patch+json
        self.custom_api.patch_namespaced_custom_object(
            KNATIVE_GROUP,
            KNATIVE_VERSION,
            namespace,
            KNATIVE_PLURAL,
            name,
            patch,
        )

    def delete_service(self, namespace: str, name: str) -> None:
        self.custom_api.delete_namespaced_custom_object(
            KNATIVE_GROUP,
            KNATIVE_VERSION,
            namespace,
            KNATIVE_PLURAL,
            name,
            body=client.V1DeleteOptions(propagation_policy="Background"),
        )


class ClusterRegistry:
    """
    Resolves a region to its ClusterAPI, one kubeconfig context per region.
    Each region gets its own ApiClient, nothing switches a shared context.
    """

    def __init__(
        self,
        context_template: str = "{region}-cluster",
        kube_config_path: Optional[str] = None,
        factory: Optional[Callable[[str], ClusterAPI]] = None,
    ):
        self.context_template = context_template
        self.kube_config_path = kube_config_path
        self._factory = factory or self._knative_for_context
        self._clusters: Dict[str, ClusterAPI] = {}
        self._lock = threading.Lock()

    def _knative_for_context(self, context: str) -> ClusterAPI:
        api_client = config.new_client_from_config(
            config_file=self.kube_config_path,
            context=context,
        )
        logger.info(f"Loaded kubeconfig context {context}")
        return KnativeClusterAPI(api_client)

    def for_region(self, region: str) -> ClusterAPI:
        with self._lock:
            cluster = self._clusters.get(region)
            if cluster is None:
                context = self.context_template.format(region=region)
                cluster = self._factory(context)
                self._clusters[region] = cluster
            return cluster
