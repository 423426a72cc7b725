"""Database models"""

from commit_translator.models.repository import AnalysisStatus, Repository
from commit_translator.models.repository_analysis import AnalysisType, RepositoryAnalysis

__all__ = [
    "AnalysisStatus",
    "AnalysisType",
    "Repository",
    "RepositoryAnalysis",
]
