"""
AWS Lambda entrypoint for scheduled stargazer syncs

Expected event payload:
- {"repositories": "owner/name,owner2/name2"}
- {"repositories": ["owner/name"], "notify_url": "https://..."}
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from starsync.errors import InvalidRequest
from starsync.jobs.star_sync import run_star_sync

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    Run a blocking sync for every repository in the event.

    Args:
        event: Event payload from EventBridge or other AWS service
        context: Lambda context object

    Returns:
        Dictionary with statusCode and result or error
    """
    payload = event or {}
    repositories = payload.get("repositories")
    logger.info(f"Lambda invoked for repositories: {repositories}")

    try:
        result = asyncio.run(run_star_sync(repositories, notify_endpoint=payload.get("notify_url")))
    except InvalidRequest as e:
        logger.error(f"Rejected sync request: {e}")
        return {
            "statusCode": 400,
            "error": str(e),
        }
    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "error": str(e),
        }

    logger.info(f"Star sync finished: success={result['success']}")
    return {
        "statusCode": 200 if result["success"] else 502,
        "result": result,
    }
