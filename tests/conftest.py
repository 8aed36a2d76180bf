"""Shared fixtures: in-memory registry, fake cluster, fake image builder, fake HTTP session."""

import json as jsonlib
import threading

import pytest
import requests
from sqlalchemy.orm import sessionmaker

from edgefn.build.image_builder import ImageBuilder
from edgefn.core.exceptions import BuildError
from edgefn.db.session import init_db, make_engine
from edgefn.k8s.cluster import ClusterAPI, ClusterRegistry
from edgefn.registry import FunctionRegistry
from edgefn.schemas.function import FunctionSpec
from edgefn.services.deployer import FunctionDeployer


class FakeCluster(ClusterAPI):
    """Cluster that becomes ready after ``ready_after`` status checks."""

    def __init__(self, region="default", ready_after=1, fail_create=None):
        self.region = region
        self.ready_after = ready_after
        self.fail_create = fail_create
        self.created = []
        self.patches = []
        self.deleted = []
        self.status_checks = 0
        self.lock = threading.Lock()

    def endpoint_for(self, namespace, name):
        return f"http://{name}.{namespace}.{self.region}.example.com"

    def create_service(self, namespace, manifest):
        if self.fail_create:
            raise self.fail_create
        with self.lock:
            self.created.append((namespace, manifest))

    def get_endpoint(self, namespace, name):
        with self.lock:
            self.status_checks += 1
            checks = self.status_checks
        if self.ready_after is None or checks < self.ready_after:
            return None
        return self.endpoint_for(namespace, name)

    def patch_service(self, namespace, name, patch):
        self.patches.append((namespace, name, patch))

    def delete_service(self, namespace, name):
        self.deleted.append((namespace, name))

    @property
    def calls(self):
        return len(self.created) + len(self.patches) + len(self.deleted) + self.status_checks


class FakeImageBuilder(ImageBuilder):
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls = []
        self.lock = threading.Lock()

    def build(self, runtime, source, image_name):
        with self.lock:
            self.calls.append((runtime, image_name))
        if image_name in self.fail_for or runtime in self.fail_for:
            raise BuildError(f"compile error in {image_name}")
        return f"registry.test/{image_name}:latest"


class FakeResponse:
    def __init__(self, status_code=200, json_body=None, content=None):
        self.status_code = status_code
        self._json = json_body
        if content is None:
            content = b"" if json_body is None else jsonlib.dumps(json_body).encode()
        self.content = content
        self.text = content.decode(errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for requests.Session; ``outcome`` is a FakeResponse or an exception."""

    def __init__(self, outcome=None):
        self.outcome = outcome if outcome is not None else FakeResponse(200, {"ok": True})
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": dict(headers or {}), "timeout": timeout})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def session_factory(tmp_path):
    # A file database gives each thread its own connection
    engine = make_engine(f"sqlite:///{tmp_path / 'edge.db'}")
    init_db(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def registry(session_factory):
    return FunctionRegistry(session_factory, default_region="default")


@pytest.fixture
def clusters():
    """Region name -> FakeCluster, created on first use."""
    created = {}

    def factory(context):
        region = context[: -len("-cluster")]
        if region not in created:
            created[region] = FakeCluster(region=region)
        return created[region]

    cluster_registry = ClusterRegistry(context_template="{region}-cluster", factory=factory)
    cluster_registry.fakes = created
    return cluster_registry


@pytest.fixture
def image_builder():
    return FakeImageBuilder()


@pytest.fixture
def deployer(registry, image_builder, clusters):
    return FunctionDeployer(
        registry,
        image_builder,
        clusters,
        poll_attempts=5,
        poll_interval=0.01,
        default_region="default",
    )


@pytest.fixture
def hello_spec():
    return FunctionSpec(
        name="hello",
        runtime="node18",
        source="module.exports = () => 'hi'",
        memory=256,
        timeout=30,
        concurrency=10,
    )
