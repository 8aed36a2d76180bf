from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, text
from sqlalchemy.orm import relationship

from ..db.base import Base
from .utils import utcnow

FUNCTION_PENDING = "pending"
FUNCTION_ACTIVE = "active"
FUNCTION_DELETED = "deleted"


class FunctionRecord(Base):
    __tablename__ = "edge_functions"
    __table_args__ = (
        # (project, name, region) is unique among records that are not soft-deleted
        Index(
            "uq_edge_functions_live",
            "project_id", "name", "region",
            unique=True,
            postgresql_where=text("status != 'deleted'"),
            sqlite_where=text("status != 'deleted'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, index=True)
    region = Column(String, nullable=False)
    runtime = Column(String, nullable=False)
    image = Column(String, nullable=False)
    memory = Column(Integer, nullable=False)  # in MB
    timeout = Column(Integer, nullable=False)  # in seconds
    concurrency = Column(Integer, nullable=False)
    environment = Column(JSON, nullable=True)
    autoscaling_config = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=FUNCTION_PENDING)
    endpoint = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    deployed_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    # Invocation history outlives the function, so no delete cascade here
    invocations = relationship("InvocationRecord", back_populates="function")

    @property
    def namespace(self) -> str:
        return f"project-{self.project_id}"

    @property
    def service_name(self) -> str:
        return f"function-{self.name}"

    @property
    def function_id(self) -> str:
        return f"{self.project_id}-{self.name}"
