from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..db.base import Base
from .utils import utcnow


class InvocationRecord(Base):
    __tablename__ = "function_invocations"

    id = Column(Integer, primary_key=True, index=True)
    function_id = Column(Integer, ForeignKey("edge_functions.id"), nullable=False, index=True)
    duration_ms = Column(Float, nullable=False)
    status = Column(Integer, nullable=False, default=200)
    result_size = Column(Integer, nullable=False, default=0)  # in bytes
    trace_id = Column(String, nullable=True)
    invoked_at = Column(DateTime, default=utcnow, index=True)

    # Relationship to the function
    function = relationship("FunctionRecord", back_populates="invocations")
