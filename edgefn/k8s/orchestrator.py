import logging
import threading
import time
from typing import Any, Dict, Optional

from .cluster import ClusterAPI

logger = logging.getLogger(__name__)


class OrchestrationClient:
    """
    Create, patch and delete function workloads on one cluster.

    ``create`` submits the manifest and then waits for a ready endpoint on a
    bounded schedule. Running out of attempts is reported as ``None`` so the
    caller can persist the function as pending.
    """

    def __init__(
        self,
        cluster: ClusterAPI,
        poll_attempts: int = 30,
        poll_interval: float = 1.0,
        clock=time.monotonic,
    ):
        self.cluster = cluster
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._clock = clock

    def create(self, manifest: Dict[str, Any], cancel: Optional[threading.Event] = None) -> Optional[str]:
        namespace = manifest["metadata"]["namespace"]
        name = manifest["metadata"]["name"]

        logger.info(f"Submitting service {namespace}/{name}")
        self.cluster.create_service(namespace, manifest)
        return self.wait_for_endpoint(namespace, name, cancel=cancel)

    def wait_for_endpoint(
        self,
        namespace: str,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[str]:
        cancel = cancel or threading.Event()
        deadline = self._clock() + self.poll_attempts * self.poll_interval

        for attempt in range(self.poll_attempts):
            endpoint = self.get_endpoint(namespace, name)
            if endpoint:
                logger.info(f"Service {namespace}/{name} ready at {endpoint} (attempt {attempt + 1})")
                return endpoint

            remaining = deadline - self._clock()
            if remaining <= 0 or attempt == self.poll_attempts - 1:
                break
            # Event.wait returns True as soon as the caller cancels
            if cancel.wait(min(self.poll_interval, remaining)):
                logger.info(f"Readiness polling for {namespace}/{name} cancelled")
                return None

        logger.warning(
            f"Service {namespace}/{name} not ready after {self.poll_attempts} attempts, leaving it pending"
        )
        return None

    def get_endpoint(self, namespace: str, name: str) -> Optional[str]:
        """Single readiness check; lookup errors count as not ready."""
        try:
            return self.cluster.get_endpoint(namespace, name)
        except Exception as e:
            logger.debug(f"Readiness check for {namespace}/{name} failed: {e}")
            return None

    def patch(self, namespace: str, name: str, delta: Dict[str, Any]) -> bool:
        logger.info(f"Patching service {namespace}/{name}")
        self.cluster.patch_service(namespace, name, delta)
        return True

    def delete(self, namespace: str, name: str) -> bool:
        logger.info(f"Deleting service {namespace}/{name}")
        self.cluster.delete_service(namespace, name)
        return True
