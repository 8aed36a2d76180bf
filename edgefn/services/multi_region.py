from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List
import logging

from ..core.exceptions import EdgeFunctionError, ValidationError
from ..k8s.manifest import validate_function_spec
from ..registry import FunctionRegistry
from ..schemas.function import FunctionSpec, MultiRegionResult, RegionOutcome
from .deployer import FunctionDeployer

logger = logging.getLogger(__name__)


class MultiRegionCoordinator:
    """
    Deploys one function into several regions.

    Every region runs the full single-region pipeline against its own
    cluster. A failing region is recorded as a failed outcome and never
    stops or rolls back the others.
    """

    def __init__(
        self,
        deployer: FunctionDeployer,
        registry: FunctionRegistry,
        max_workers: int = 4,
        global_domain: str = "global.example.com",
    ):
        self.deployer = deployer
        self.registry = registry
        self.max_workers = max_workers
        self.global_domain = global_domain

    def global_endpoint(self, project_id: str, name: str) -> str:
        return f"https://functions-{project_id}.{self.global_domain}/{name}"

    def _deploy_region(self, project_id: str, spec: FunctionSpec, region: str) -> RegionOutcome:
        try:
            record = self.deployer.deploy(project_id, spec, region=region)
            return RegionOutcome(
                region=region,
                status="success",
                endpoint=record.endpoint,
                function_status=record.status,
            )
        except EdgeFunctionError as e:
            logger.error(f"Failed to deploy {project_id}/{spec.name} to region {region}: {e.detail}")
            return RegionOutcome(region=region, status="failed", error=e.detail)
        except Exception as e:
            logger.exception(f"Unexpected error deploying {project_id}/{spec.name} to region {region}")
            return RegionOutcome(region=region, status="failed", error=str(e))

    def deploy_all(self, project_id: str, spec: FunctionSpec, regions: List[str]) -> MultiRegionResult:
        if not regions:
            raise ValidationError("At least one region is required")
        if len(set(regions)) != len(regions):
            raise ValidationError(f"Duplicate regions in request: {regions}")
        validate_function_spec(spec)

        workers = max(1, min(self.max_workers, len(regions)))
        logger.info(f"Deploying {project_id}/{spec.name} to {len(regions)} region(s) with {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="region-deploy") as executor:
            # map keeps results in input order
            outcomes = list(executor.map(lambda region: self._deploy_region(project_id, spec, region), regions))

        endpoint = self.global_endpoint(project_id, spec.name)
        data: List[Dict[str, Any]] = [outcome.model_dump(exclude_none=True) for outcome in outcomes]
        deployment = self.registry.save_multi_region(project_id, spec.name, regions, data, endpoint)

        failed = [outcome.region for outcome in outcomes if outcome.status == "failed"]
        if failed:
            logger.warning(f"Multi-region deploy of {project_id}/{spec.name} failed in: {', '.join(failed)}")

        return MultiRegionResult(
            deployment_id=deployment.id,
            function_name=spec.name,
            deployments=outcomes,
            global_endpoint=endpoint,
        )
