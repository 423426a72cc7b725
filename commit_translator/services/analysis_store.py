"""SQLAlchemy-backed persistence for repositories and analysis rows."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from commit_translator.config.database import SessionLocal
from commit_translator.exceptions import RepositoryNotFoundError
from commit_translator.models.repository import AnalysisStatus, Repository
from commit_translator.models.repository_analysis import AnalysisType, RepositoryAnalysis
from commit_translator.services.change_detector import parse_github_datetime
from commit_translator.services.events import AnalysisRecorded, EventBus, RepositoryDeleted, RepositoryUpdated

logger = logging.getLogger(__name__)

METADATA_FIELDS = (
    "description",
    "language",
    "stargazers_count",
    "forks_count",
    "open_issues_count",
    "github_updated_at",
)


@dataclass(slots=True)
class RepositorySnapshot:
    """Detached copy of a `repositories` row."""

    id: int
    user_id: str
    github_id: Optional[int]
    name: str
    full_name: str
    is_private: bool
    description: Optional[str]
    language: Optional[str]
    html_url: Optional[str]
    stargazers_count: int
    forks_count: int
    open_issues_count: int
    analysis_status: str
    last_analyzed_at: Optional[datetime]
    github_updated_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Repository) -> "RepositorySnapshot":
        return cls(
            id=row.id,
            user_id=row.user_id,
            github_id=row.github_id,
            name=row.name,
            full_name=row.full_name,
            is_private=bool(row.is_private),
            description=row.description,
            language=row.language,
            html_url=row.html_url,
            stargazers_count=int(row.stargazers_count or 0),
            forks_count=int(row.forks_count or 0),
            open_issues_count=int(row.open_issues_count or 0),
            analysis_status=row.analysis_status,
            last_analyzed_at=row.last_analyzed_at,
            github_updated_at=row.github_updated_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        return payload


@dataclass(slots=True)
class AnalysisRecord:
    """Detached copy of a `repository_analysis` row."""

    id: int
    repository_id: int
    analysis_type: str
    content: dict[str, Any]
    created_at: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "analysis_type": self.analysis_type,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def map_github_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Map a GitHub `/repos/{full_name}` payload onto repository columns."""

    full_name = str(payload.get("full_name") or "").strip()
    if "/" not in full_name:
        raise ValueError(f"GitHub payload has no usable full_name: {full_name!r}")

    github_id = payload.get("id")
    return {
        "github_id": github_id if isinstance(github_id, int) else None,
        "name": str(payload.get("name") or full_name.split("/", 1)[1]),
        "full_name": full_name,
        "is_private": bool(payload.get("private") or False),
        "description": payload.get("description"),
        "language": payload.get("language"),
        "html_url": payload.get("html_url") or f"https://github.com/{full_name}",
        "stargazers_count": int(payload.get("stargazers_count") or 0),
        "forks_count": int(payload.get("forks_count") or 0),
        "open_issues_count": int(payload.get("open_issues_count") or 0),
        "github_updated_at": parse_github_datetime(payload.get("updated_at")),
    }


class AnalysisStore:
    """Repository and analysis persistence scoped by owner where it matters.

    Analysis rows are append-only; readers pick the newest row per type.
    Every committed write is announced on the event bus.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any] = SessionLocal,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._session_factory = session_factory
        self.event_bus = event_bus or EventBus()

    @contextmanager
    def _session(self) -> Iterator[Any]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _publish(self, events: list[Any]) -> None:
        for event in events:
            self.event_bus.publish(event)

    def connect_repository(self, user_id: str, github_payload: dict[str, Any]) -> RepositorySnapshot:
        """Create (or refresh) the caller's row for a GitHub repository."""

        columns = map_github_payload(github_payload)
        with self._session() as db:
            row = db.query(Repository).filter_by(user_id=user_id, full_name=columns["full_name"]).first()
            if row is None:
                row = Repository(user_id=user_id, analysis_status=AnalysisStatus.PENDING.value, **columns)
                db.add(row)
            else:
                for name, value in columns.items():
                    setattr(row, name, value)
                row.updated_at = datetime.utcnow()
            db.flush()
            snapshot = RepositorySnapshot.from_row(row)

        logger.info("Repository connected", extra={"repository_id": snapshot.id, "repo": snapshot.full_name})
        self._publish([RepositoryUpdated(snapshot.id, snapshot.user_id, {"connected": True})])
        return snapshot

    def list_repositories(self, user_id: Optional[str] = None) -> list[RepositorySnapshot]:
        with self._session() as db:
            query = db.query(Repository)
            if user_id is not None:
                query = query.filter(Repository.user_id == user_id)
            return [RepositorySnapshot.from_row(row) for row in query.order_by(Repository.id.asc()).all()]

    def get_repository(self, repository_id: int, user_id: Optional[str] = None) -> Optional[RepositorySnapshot]:
        """Fetch one repository; `user_id` limits the lookup to its owner."""

        with self._session() as db:
            row = self._find(db, repository_id, user_id)
            return RepositorySnapshot.from_row(row) if row is not None else None

    def require_repository(self, repository_id: int, user_id: Optional[str] = None) -> RepositorySnapshot:
        snapshot = self.get_repository(repository_id, user_id)
        if snapshot is None:
            raise RepositoryNotFoundError(repository_id, user_id)
        return snapshot

    def update_repository_metadata(self, repository_id: int, updates: dict[str, Any]) -> RepositorySnapshot:
        applied = {name: value for name, value in updates.items() if name in METADATA_FIELDS}
        with self._session() as db:
            row = self._find_or_raise(db, repository_id)
            for name, value in applied.items():
                setattr(row, name, value)
            row.updated_at = datetime.utcnow()
            db.flush()
            snapshot = RepositorySnapshot.from_row(row)

        self._publish([RepositoryUpdated(snapshot.id, snapshot.user_id, dict(applied))])
        return snapshot

    def record_overview(self, repository_id: int, payload: dict[str, Any]) -> int:
        return self._record(repository_id, AnalysisType.OVERVIEW, payload)

    def record_commit_analysis(self, repository_id: int, payload: dict[str, Any]) -> int:
        return self._record(repository_id, AnalysisType.COMMITS, payload)

    def set_analysis_status(
        self,
        repository_id: int,
        status: AnalysisStatus | str,
        timestamp: Optional[datetime] = None,
    ) -> RepositorySnapshot:
        """Move a repository's analysis status; stamps `last_analyzed_at` on completion only."""

        status_value = AnalysisStatus(status).value
        fields: dict[str, Any] = {"analysis_status": status_value}
        with self._session() as db:
            row = self._find_or_raise(db, repository_id)
            row.analysis_status = status_value
            if status_value == AnalysisStatus.COMPLETED.value:
                row.last_analyzed_at = timestamp or datetime.utcnow()
                fields["last_analyzed_at"] = row.last_analyzed_at.isoformat()
            db.flush()
            snapshot = RepositorySnapshot.from_row(row)

        logger.info(
            "Repository analysis status changed",
            extra={"repository_id": repository_id, "analysis_status": status_value},
        )
        self._publish([RepositoryUpdated(snapshot.id, snapshot.user_id, fields)])
        return snapshot

    def latest_analysis(self, repository_id: int, analysis_type: AnalysisType | str) -> Optional[AnalysisRecord]:
        type_value = AnalysisType(analysis_type).value
        with self._session() as db:
            row = (
                db.query(RepositoryAnalysis)
                .filter(
                    RepositoryAnalysis.repository_id == repository_id,
                    RepositoryAnalysis.analysis_type == type_value,
                )
                .order_by(RepositoryAnalysis.created_at.desc(), RepositoryAnalysis.id.desc())
                .first()
            )
            if row is None:
                return None
            return AnalysisRecord(
                id=row.id,
                repository_id=row.repository_id,
                analysis_type=row.analysis_type,
                content=dict(row.content or {}),
                created_at=row.created_at,
            )

    def delete_repository(self, repository_id: int, user_id: str) -> bool:
        """Delete an owned repository and its analyses; other owners' rows are left alone."""

        with self._session() as db:
            row = self._find(db, repository_id, user_id)
            if row is None:
                logger.warning(
                    "Rejected repository delete outside owner scope",
                    extra={"repository_id": repository_id, "user_id": user_id},
                )
                return False

            removed = (
                db.query(RepositoryAnalysis)
                .filter(RepositoryAnalysis.repository_id == repository_id)
                .delete(synchronize_session=False)
            )
            db.flush()
            db.delete(row)

        logger.info("Repository deleted", extra={"repository_id": repository_id, "analyses_removed": removed})
        self._publish([RepositoryDeleted(repository_id, user_id)])
        return True

    def _record(self, repository_id: int, analysis_type: AnalysisType, payload: dict[str, Any]) -> int:
        with self._session() as db:
            row = self._find_or_raise(db, repository_id)
            user_id = row.user_id
            analysis = RepositoryAnalysis(
                repository_id=repository_id,
                analysis_type=analysis_type.value,
                content=payload,
            )
            db.add(analysis)
            db.flush()
            analysis_id = int(analysis.id)

        self._publish([AnalysisRecorded(repository_id, user_id, analysis_id, analysis_type.value)])
        return analysis_id

    @staticmethod
    def _find(db: Any, repository_id: int, user_id: Optional[str]) -> Optional[Repository]:
        query = db.query(Repository).filter(Repository.id == repository_id)
        if user_id is not None:
            query = query.filter(Repository.user_id == user_id)
        return query.first()

    def _find_or_raise(self, db: Any, repository_id: int) -> Repository:
        row = self._find(db, repository_id, None)
        if row is None:
            raise RepositoryNotFoundError(repository_id)
        return row
