"""Repository model for connected GitHub repositories."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from commit_translator.config.database import Base


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class Repository(Base):
    """Repository entity mapped to `repositories` table."""

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    github_id = Column(BigInteger, nullable=True)

    name = Column(String(100), nullable=False)
    full_name = Column(String(200), nullable=False)
    is_private = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)
    language = Column(String(50), nullable=True)
    html_url = Column(String(500), nullable=True)

    stargazers_count = Column(Integer, nullable=False, default=0)
    forks_count = Column(Integer, nullable=False, default=0)
    open_issues_count = Column(Integer, nullable=False, default=0)

    analysis_status = Column(String(20), nullable=False, default=AnalysisStatus.PENDING.value)
    last_analyzed_at = Column(DateTime, nullable=True)
    github_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    analyses = relationship("RepositoryAnalysis", back_populates="repository")

    __table_args__ = (
        UniqueConstraint("user_id", "full_name", name="uq_repositories_user_full_name"),
        Index("idx_repositories_status", "analysis_status"),
    )

    def __repr__(self):
        return f"<Repository {self.full_name} ({self.analysis_status})>"
