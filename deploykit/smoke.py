"""
Post-deploy smoke check for the deployed application.
"""

import time
import logging
from typing import Any, Dict, List, Union

import requests

logger = logging.getLogger(__name__)


class SmokeTestResult:
    """Result of a smoke check."""
    
    def __init__(self, success: bool, message: str, details: Dict[str, Any] = None):
        self.success = success
        self.message = message
        self.details = details or {}


def run_smoke_check(url: str, expect: Union[int, List[int]] = 200, contains: str = None,
                    max_tries: int = 12, retry_delay: float = 5, timeout: float = 10) -> SmokeTestResult:
    """
    Poll ``url`` until it answers with an expected status.
    
    Args:
        url: Health URL of the deployed application
        expect: Expected status code or list of codes
        contains: Optional text the response body must contain
        max_tries: Maximum number of attempts
        retry_delay: Delay between attempts in seconds
        timeout: Per-request timeout in seconds
        
    Returns:
        SmokeTestResult with success status and details
    """
    expected_status = [expect] if isinstance(expect, int) else list(expect)
    logger.info(f"Smoke checking {url} (expecting status {expected_status})")
    
    last_error = None
    for attempt in range(max_tries):
        try:
            response = requests.get(url, timeout=timeout)
            if response.status_code not in expected_status:
                last_error = f"Expected status {expected_status}, got {response.status_code}"
            elif contains and contains not in response.text:
                last_error = f"Expected content '{contains}' not found in response"
            else:
                return SmokeTestResult(
                    success=True,
                    message=f"{url} answered {response.status_code} after {attempt + 1} attempt(s)",
                    details={"status": response.status_code, "attempts": attempt + 1}
                )
        except requests.exceptions.RequestException as e:
            last_error = f"Request failed: {str(e)}"
        
        if attempt < max_tries - 1:
            logger.debug(f"Attempt {attempt + 1} failed, retrying in {retry_delay}s...")
            time.sleep(retry_delay)
    
    logger.error(f"Smoke check failed for {url}: {last_error}")
    return SmokeTestResult(
        success=False,
        message=f"Smoke check failed for {url}: {last_error}",
        details={"error": last_error, "attempts": max_tries}
    )
