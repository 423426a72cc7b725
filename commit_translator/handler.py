"""
AWS Lambda entrypoint for scheduled Commit Translator work

Event-driven handler triggered by EventBridge Scheduler (or invoked directly).
The HTTP API lives in `commit_translator.main`.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from commit_translator.jobs.sync_scheduler import SyncScheduler, parse_repository_ids
from commit_translator.orchestrator import CommitTranslatorOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Instantiate once per Lambda execution environment
orchestrator = CommitTranslatorOrchestrator()
scheduler = SyncScheduler(orchestrator)


async def _sync_many(repository_ids: list[int], github_token: Optional[str]) -> list[Dict[str, Any]]:
    results = []
    for repository_id in repository_ids:
        results.append(await scheduler.request_sync(repository_id, github_token=github_token))
    return results


async def _analyze_many(repository_ids: list[int], github_token: Optional[str]) -> list[Dict[str, Any]]:
    results = []
    for repository_id in repository_ids:
        result = await orchestrator.run_analysis(repository_id, github_token=github_token)
        results.append({"repository_id": repository_id, **result})
    return results


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    Dispatch scheduled work based on `event["action"]`.

    Expected event payloads:
    - {"action": "tick"}                                   periodic sync pass
    - {"action": "tick", "user_id": "..."}                 one owner's repositories
    - {"action": "sync", "repository_id": 1}               sync specific repositories
    - {"action": "analyze", "repository_id": "1,2"}        full re-analysis

    Default is "tick" if no action is provided. An optional "github_token"
    overrides the configured credential.

    Returns:
        Dictionary with statusCode, action, and result or error
    """
    payload = event or {}
    action = payload.get("action", "tick")
    github_token = payload.get("github_token")
    logger.info(f"Lambda invoked with action: {action}")

    try:
        if action == "tick":
            result = asyncio.run(scheduler.tick(user_id=payload.get("user_id"), github_token=github_token))

        elif action in ("sync", "analyze"):
            repository_ids = parse_repository_ids(payload.get("repository_id") or payload.get("repository_ids"))
            if not repository_ids:
                raise ValueError(f"Action '{action}' requires repository_id")
            if action == "sync":
                result = asyncio.run(_sync_many(repository_ids, github_token))
            else:
                result = asyncio.run(_analyze_many(repository_ids, github_token))

        else:
            error_msg = f"Unknown action: {action}"
            logger.error(error_msg)
            return {
                "statusCode": 400,
                "action": action,
                "error": error_msg,
            }

        logger.info(f"Action {action} completed")

        return {
            "statusCode": 200,
            "action": action,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "action": action,
            "error": str(e),
        }


# Allow local testing via `python -m commit_translator.handler`
if __name__ == "__main__":
    print(lambda_handler({"action": "tick"}, None))
