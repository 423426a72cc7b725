"""Analysis rows produced by analysis runs."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from commit_translator.config.database import Base


class AnalysisType(str, enum.Enum):
    OVERVIEW = "overview"
    COMMITS = "commits"


class RepositoryAnalysis(Base):
    """Append-only analysis record mapped to `repository_analysis` table."""

    __tablename__ = "repository_analysis"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False)
    analysis_type = Column(String(20), nullable=False)
    content = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    repository = relationship("Repository", back_populates="analyses")

    __table_args__ = (
        Index("idx_repository_analysis_latest", "repository_id", "analysis_type", "created_at"),
    )

    def __repr__(self):
        return f"<RepositoryAnalysis {self.repository_id}:{self.analysis_type}>"
