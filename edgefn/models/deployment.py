from sqlalchemy import Column, Integer, String, DateTime, JSON

from ..db.base import Base
from .utils import utcnow


class MultiRegionDeployment(Base):
    """
    Outcome of one multi-region deploy call.
    Rows are written once and never updated.
    """
    __tablename__ = "multi_region_functions"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String, nullable=False, index=True)
    function_name = Column(String, nullable=False, index=True)
    regions = Column(JSON, nullable=False)  # requested regions, in order
    deployment_data = Column(JSON, nullable=False)  # per-region outcomes, same order
    global_endpoint = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
