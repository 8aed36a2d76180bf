import logging
import threading
from typing import Dict, List, Optional

from kubernetes.client.rest import ApiException

from ..build.image_builder import ImageBuilder
from ..core.exceptions import ConflictError, NotFoundError, PartialUpdateError
from ..core.locks import KeyedLock
from ..k8s.cluster import ClusterRegistry
from ..k8s.manifest import autoscaling_patch, build_manifest, validate_autoscaling, validate_function_spec
from ..k8s.orchestrator import OrchestrationClient
from ..models import FunctionRecord, FUNCTION_ACTIVE
from ..registry import FunctionRegistry
from ..schemas.function import AutoscalingConfig, FunctionSpec

logger = logging.getLogger(__name__)


class FunctionDeployer:
    """
    Single-region deploy pipeline plus the operations that change a deployed
    function: autoscaling reconfiguration, deletion and reconciliation of
    functions left pending.

    Work on the same (project, name, region) is serialized; anything else
    runs in parallel.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        image_builder: ImageBuilder,
        clusters: ClusterRegistry,
        poll_attempts: int = 30,
        poll_interval: float = 1.0,
        default_region: str = "default",
        locks: Optional[KeyedLock] = None,
        shutdown: Optional[threading.Event] = None,
    ):
        self.registry = registry
        self.image_builder = image_builder
        self.clusters = clusters
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.default_region = default_region
        self.locks = locks or KeyedLock()
        self.shutdown = shutdown or threading.Event()

    def orchestrator_for(self, region: str) -> OrchestrationClient:
        return OrchestrationClient(
            self.clusters.for_region(region),
            poll_attempts=self.poll_attempts,
            poll_interval=self.poll_interval,
        )

    def deploy(
        self,
        project_id: str,
        spec: FunctionSpec,
        region: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> FunctionRecord:
        """
        Build, submit and record one function in one region.

        Raises:
            ValidationError: spec rejected, nothing was built or submitted
            ConflictError: a live function with this name exists in the region,
                or the cluster still holds the service from an earlier delete
            BuildError: image build failed, no cluster object was created
        """
        region = region or self.default_region
        validate_function_spec(spec)

        with self.locks.hold((project_id, spec.name, region)):
            if self.registry.get_function(project_id, spec.name, region) is not None:
                raise ConflictError(project_id, spec.name, region)

            logger.info(f"Deploying {project_id}/{spec.name} to {region} ({spec.runtime}, {spec.memory}MB)")
            image_ref = self.image_builder.build(spec.runtime, spec.source, f"{project_id}/function-{spec.name}")
            manifest = build_manifest(project_id, spec, image_ref)

            try:
                endpoint = self.orchestrator_for(region).create(manifest, cancel=cancel or self.shutdown)
            except ApiException as e:
                if e.status != 409:
                    raise
                # Service from a recent delete is still being torn down
                logger.warning(f"Service function-{spec.name} still exists in project-{project_id} ({region})")
                raise ConflictError(project_id, spec.name, region) from e

            return self.registry.create_function(
                project_id=project_id,
                name=spec.name,
                region=region,
                runtime=spec.runtime,
                image=image_ref,
                memory=spec.memory,
                timeout=spec.timeout,
                concurrency=spec.concurrency,
                environment=spec.environment,
                autoscaling_config=spec.autoscaling.model_dump() if spec.autoscaling else None,
                endpoint=endpoint,
            )

    def _records_or_404(self, project_id: str, name: str, region: Optional[str]) -> List[FunctionRecord]:
        records = self.registry.find_functions(project_id, name, region)
        if not records:
            where = f" in region {region}" if region else ""
            raise NotFoundError(f"Function not found: {project_id}/{name}{where}")
        return records

    def configure_autoscaling(
        self,
        project_id: str,
        name: str,
        config: AutoscalingConfig,
        region: Optional[str] = None,
    ) -> List[FunctionRecord]:
        validate_autoscaling(config)
        records = self._records_or_404(project_id, name, region)

        patch = autoscaling_patch(config)
        updated = []
        failed: Dict[str, str] = {}
        for record in records:
            try:
                with self.locks.hold((project_id, name, record.region)):
                    self.orchestrator_for(record.region).patch(record.namespace, record.service_name, patch)
                    updated.append(self.registry.update_autoscaling(record.id, config.model_dump()))
                logger.info(f"Autoscaling for {project_id}/{name} ({record.region}) set to {config.model_dump()}")
            except Exception as e:
                logger.error(f"Autoscaling patch for {project_id}/{name} failed in {record.region}: {str(e)}")
                failed[record.region] = str(e)

        if failed:
            done = [record.region for record in updated]
            raise PartialUpdateError(
                f"Autoscaling for {project_id}/{name} applied in {done or 'no region'}, failed in {sorted(failed)}",
                updated=done,
                failed=failed,
            )
        return updated

    def delete(self, project_id: str, name: str, region: Optional[str] = None) -> List[FunctionRecord]:
        records = self._records_or_404(project_id, name, region)

        deleted = []
        for record in records:
            with self.locks.hold((project_id, name, record.region)):
                try:
                    self.orchestrator_for(record.region).delete(record.namespace, record.service_name)
                except ApiException as e:
                    if e.status != 404:
                        raise
                    logger.warning(f"Service {record.namespace}/{record.service_name} already gone in {record.region}")
                deleted.append(self.registry.mark_deleted(record.id))
        return deleted

    def reconcile_pending(self) -> int:
        """Promote pending functions whose endpoint has since become ready."""
        promoted = 0
        for record in self.registry.list_pending():
            try:
                endpoint = self.orchestrator_for(record.region).get_endpoint(record.namespace, record.service_name)
                if not endpoint:
                    continue
                with self.locks.hold((record.project_id, record.name, record.region)):
                    # mark_active leaves a record deleted in the meantime untouched
                    if self.registry.mark_active(record.id, endpoint).status == FUNCTION_ACTIVE:
                        promoted += 1
            except Exception as e:
                logger.error(f"Reconcile of {record.function_id} ({record.region}) failed: {str(e)}")
        if promoted:
            logger.info(f"Reconcile promoted {promoted} pending function(s)")
        return promoted
