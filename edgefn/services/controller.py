import logging
import threading
from typing import Optional

import requests
from sqlalchemy.orm import sessionmaker

from ..build.image_builder import DockerImageBuilder, ImageBuilder
from ..core.config import Settings
from ..execution.proxy import InvocationProxy
from ..k8s.cluster import ClusterRegistry
from ..metrics.collector import MetricsCollector
from ..metrics.writer import ErrorSink, LoggingErrorSink, MetricsWriter, RedisErrorSink
from ..registry import FunctionRegistry
from .deployer import FunctionDeployer
from .multi_region import MultiRegionCoordinator

logger = logging.getLogger(__name__)


class EdgeFunctionsController:
    """Wires the registry, deploy pipeline, invocation proxy and metrics together."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        image_builder: ImageBuilder,
        clusters: ClusterRegistry,
        error_sink: Optional[ErrorSink] = None,
        http_session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.shutdown = threading.Event()
        self.registry = FunctionRegistry(session_factory, default_region=settings.DEFAULT_REGION)
        self.deployer = FunctionDeployer(
            self.registry,
            image_builder,
            clusters,
            poll_attempts=settings.READINESS_POLL_ATTEMPTS,
            poll_interval=settings.READINESS_POLL_INTERVAL,
            default_region=settings.DEFAULT_REGION,
            shutdown=self.shutdown,
        )
        self.coordinator = MultiRegionCoordinator(
            self.deployer,
            self.registry,
            max_workers=settings.MULTI_REGION_MAX_WORKERS,
            global_domain=settings.GLOBAL_ENDPOINT_DOMAIN,
        )
        self.writer = MetricsWriter(self.registry, error_sink, maxsize=settings.METRICS_QUEUE_SIZE)
        self.proxy = InvocationProxy(self.registry, self.writer, session=http_session)
        self.collector = MetricsCollector(
            self.registry,
            cost_per_invocation=settings.COST_PER_INVOCATION,
            cost_per_gb_second=settings.COST_PER_GB_SECOND,
            bucket_seconds=settings.METRICS_BUCKET_SECONDS,
        )

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: sessionmaker) -> "EdgeFunctionsController":
        error_sink = RedisErrorSink.from_url(settings.REDIS_URL) if settings.REDIS_URL else LoggingErrorSink()
        return cls(
            settings,
            session_factory,
            image_builder=DockerImageBuilder(settings.REGISTRY_URL, base_url=settings.DOCKER_HOST),
            clusters=ClusterRegistry(
                context_template=settings.CLUSTER_CONTEXT_TEMPLATE,
                kube_config_path=settings.KUBE_CONFIG_PATH,
            ),
            error_sink=error_sink,
        )

    def start(self) -> None:
        self.writer.start()

    def close(self) -> None:
        # Wakes every readiness poll still waiting
        self.shutdown.set()
        self.writer.stop()
