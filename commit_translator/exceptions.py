"""Custom exceptions for the Commit Translator service"""

from datetime import datetime
from typing import Any, Dict, Optional


class CommitTranslatorError(Exception):
    """Base error carrying an API-friendly payload."""

    error_type = "commit_translator_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": str(self),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class RepositoryNotFoundError(CommitTranslatorError):
    """Raised when a repository does not exist or is not visible to the caller."""

    error_type = "repository_not_found"
    http_status = 404

    def __init__(self, repository_id: int, user_id: Optional[str] = None):
        self.repository_id = repository_id
        self.user_id = user_id
        super().__init__(
            f"Repository {repository_id} not found",
            details={"repository_id": repository_id},
        )


class GitHubFetchError(CommitTranslatorError):
    """Raised when a required GitHub call does not succeed."""

    error_type = "github_fetch_error"
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, details={"status_code": status_code})


class RepositoryAccessError(CommitTranslatorError):
    """Raised when a private repository is connected without the caller's own GitHub credential."""

    error_type = "repository_access_denied"
    http_status = 403

    def __init__(self, full_name: str):
        self.full_name = full_name
        super().__init__(
            f"Repository {full_name} is private; connect it with your own GitHub token",
            details={"full_name": full_name},
        )


class LLMError(CommitTranslatorError):
    """Raised when the model endpoint is unavailable or rejects the call."""

    error_type = "llm_error"
    http_status = 503


class LLMConfigurationError(LLMError):
    """Raised when the configured provider has no usable credentials."""

    error_type = "llm_configuration_error"
