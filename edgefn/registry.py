"""
Durable store for function records, invocation records and multi-region
deployments.

Each call opens its own session from the injected ``sessionmaker`` so the
registry can be shared by request threads, fan-out workers and the metrics
writer thread.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import and_, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .core.exceptions import ConflictError, NotFoundError
from .models import (
    FunctionRecord,
    InvocationRecord,
    MultiRegionDeployment,
    FUNCTION_ACTIVE,
    FUNCTION_DELETED,
    FUNCTION_PENDING,
)
from .models.utils import utcnow

logger = logging.getLogger(__name__)


class FunctionRegistry:
    def __init__(self, session_factory: sessionmaker, default_region: str = "default"):
        # Records are handed to other threads after their session closes
        session_factory.configure(expire_on_commit=False)
        self.session_factory = session_factory
        self.default_region = default_region

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _live(db, project_id: str, name: str):
        return db.query(FunctionRecord).filter(
            FunctionRecord.project_id == project_id,
            FunctionRecord.name == name,
            FunctionRecord.status != FUNCTION_DELETED,
        )

    # Function records

    def create_function(
        self,
        project_id: str,
        name: str,
        region: str,
        runtime: str,
        image: str,
        memory: int,
        timeout: int,
        concurrency: int,
        environment: Optional[Dict[str, Any]] = None,
        autoscaling_config: Optional[Dict[str, Any]] = None,
        endpoint: Optional[str] = None,
    ) -> FunctionRecord:
        """Insert a function; active when an endpoint is known, else pending."""
        now = utcnow()
        record = FunctionRecord(
            project_id=project_id,
            name=name,
            region=region,
            runtime=runtime,
            image=image,
            memory=memory,
            timeout=timeout,
            concurrency=concurrency,
            environment=environment or {},
            autoscaling_config=autoscaling_config,
            status=FUNCTION_ACTIVE if endpoint else FUNCTION_PENDING,
            endpoint=endpoint or None,
            created_at=now,
            deployed_at=now if endpoint else None,
        )
        try:
            with self._session() as db:
                existing = self._live(db, project_id, name).filter(FunctionRecord.region == region).first()
                if existing is not None:
                    raise ConflictError(project_id, name, region)
                db.add(record)
        except IntegrityError as e:
            logger.warning(f"Unique index rejected {project_id}/{name} in {region}: {e.orig}")
            raise ConflictError(project_id, name, region) from e

        logger.info(f"Stored function {project_id}/{name} ({region}) as {record.status}")
        return record

    def get_function(self, project_id: str, name: str, region: Optional[str] = None) -> Optional[FunctionRecord]:
        region = region or self.default_region
        with self._session() as db:
            return self._live(db, project_id, name).filter(FunctionRecord.region == region).first()

    def get_by_id(self, function_id: int) -> Optional[FunctionRecord]:
        with self._session() as db:
            return db.query(FunctionRecord).filter(FunctionRecord.id == function_id).first()

    def find_functions(self, project_id: str, name: str, region: Optional[str] = None) -> List[FunctionRecord]:
        """All live records for a function, optionally limited to one region."""
        with self._session() as db:
            query = self._live(db, project_id, name)
            if region:
                query = query.filter(FunctionRecord.region == region)
            return query.order_by(FunctionRecord.region).all()

    def find_routable(self, project_id: str, name: str, region: Optional[str] = None) -> Optional[FunctionRecord]:
        """
        Pick the record an invocation should go to.
        An explicit region is exact; otherwise active records come first,
        the default region breaks ties, then the newest deployment.
        """
        if region:
            return self.get_function(project_id, name, region)
        with self._session() as db:
            return self._live(db, project_id, name).order_by(
                case((FunctionRecord.status == FUNCTION_ACTIVE, 0), else_=1),
                case((FunctionRecord.region == self.default_region, 0), else_=1),
                FunctionRecord.deployed_at.desc(),
                FunctionRecord.id.desc(),
            ).first()

    def has_history(self, project_id: str, name: str) -> bool:
        """True when any record ever existed, deleted ones included."""
        with self._session() as db:
            return db.query(FunctionRecord.id).filter(
                FunctionRecord.project_id == project_id,
                FunctionRecord.name == name,
            ).first() is not None

    def list_functions(self, project_id: str, include_deleted: bool = False) -> List[FunctionRecord]:
        with self._session() as db:
            query = db.query(FunctionRecord).filter(FunctionRecord.project_id == project_id)
            if not include_deleted:
                query = query.filter(FunctionRecord.status != FUNCTION_DELETED)
            return query.order_by(FunctionRecord.name, FunctionRecord.region).all()

    def list_pending(self) -> List[FunctionRecord]:
        with self._session() as db:
            return db.query(FunctionRecord).filter(FunctionRecord.status == FUNCTION_PENDING).all()

    def _load(self, db, function_id: int) -> FunctionRecord:
        record = db.query(FunctionRecord).filter(FunctionRecord.id == function_id).first()
        if record is None:
            raise NotFoundError(f"Function record {function_id} not found")
        return record

    def mark_active(self, function_id: int, endpoint: str) -> FunctionRecord:
        with self._session() as db:
            record = self._load(db, function_id)
            if record.status == FUNCTION_DELETED:
                return record
            record.status = FUNCTION_ACTIVE
            record.endpoint = endpoint
            record.deployed_at = utcnow()
        logger.info(f"Function {record.function_id} ({record.region}) is active at {endpoint}")
        return record

    def update_autoscaling(self, function_id: int, config: Dict[str, Any]) -> FunctionRecord:
        with self._session() as db:
            record = self._load(db, function_id)
            record.autoscaling_config = dict(config)
        return record

    def mark_deleted(self, function_id: int) -> FunctionRecord:
        with self._session() as db:
            record = self._load(db, function_id)
            record.status = FUNCTION_DELETED
            record.endpoint = None
            record.deleted_at = utcnow()
        logger.info(f"Function {record.function_id} ({record.region}) marked deleted")
        return record

    # Invocation records

    def record_invocation(
        self,
        function_id: int,
        duration_ms: float,
        status: int = 200,
        result_size: int = 0,
        trace_id: Optional[str] = None,
        invoked_at: Optional[datetime] = None,
    ) -> InvocationRecord:
        record = InvocationRecord(
            function_id=function_id,
            duration_ms=duration_ms,
            status=status,
            result_size=result_size,
            trace_id=trace_id,
            invoked_at=invoked_at or utcnow(),
        )
        with self._session() as db:
            db.add(record)
        return record

    def list_invocations(
        self,
        project_id: str,
        name: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[Tuple[InvocationRecord, int]]:
        """Invocations in [since, until) paired with the owning function's memory in MB."""
        until = until or utcnow()
        with self._session() as db:
            rows = db.query(InvocationRecord, FunctionRecord.memory).join(
                FunctionRecord, InvocationRecord.function_id == FunctionRecord.id
            ).filter(
                and_(
                    FunctionRecord.project_id == project_id,
                    FunctionRecord.name == name,
                    InvocationRecord.invoked_at >= since,
                    InvocationRecord.invoked_at < until,
                )
            ).order_by(InvocationRecord.invoked_at).all()
            return [(invocation, memory) for invocation, memory in rows]

    # Multi-region deployments

    def save_multi_region(
        self,
        project_id: str,
        function_name: str,
        regions: List[str],
        outcomes: List[Dict[str, Any]],
        global_endpoint: str,
    ) -> MultiRegionDeployment:
        record = MultiRegionDeployment(
            project_id=project_id,
            function_name=function_name,
            regions=list(regions),
            deployment_data=[dict(outcome) for outcome in outcomes],
            global_endpoint=global_endpoint,
            created_at=utcnow(),
        )
        with self._session() as db:
            db.add(record)
        return record

    def get_multi_region(self, deployment_id: int) -> Optional[MultiRegionDeployment]:
        with self._session() as db:
            return db.query(MultiRegionDeployment).filter(MultiRegionDeployment.id == deployment_id).first()

    def list_multi_region(self, project_id: str, function_name: str) -> List[MultiRegionDeployment]:
        with self._session() as db:
            return db.query(MultiRegionDeployment).filter(
                MultiRegionDeployment.project_id == project_id,
                MultiRegionDeployment.function_name == function_name,
            ).order_by(MultiRegionDeployment.created_at.desc(), MultiRegionDeployment.id.desc()).all()
