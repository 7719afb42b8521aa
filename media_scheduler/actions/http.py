"""HTTP task action — asks the web app's execute endpoint to run a task."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from media_scheduler.actions.base import ActionRequest, ActionResult
from media_scheduler.config import settings

logger = logging.getLogger(__name__)

MAX_ERROR_BODY = 200


def _query_params(request: ActionRequest) -> dict[str, str]:
    """Flatten the request into query parameters (camelCase, stringified)."""
    params: dict[str, str] = {
        "taskId": request.task_id,
        "itemId": request.item_id,
        "type": request.task_type,
    }
    for key, value in request.options.items():
        params[_camel(key)] = _stringify(value)
    return params


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HttpTaskAction:
    """Runs a task by calling the execute endpoint.

    Args:
        endpoint_url: URL of the execute endpoint (default from settings).
        timeout: Request timeout in seconds (default from settings).
    """

    def __init__(self, endpoint_url: str | None = None, timeout: float | None = None) -> None:
        self._endpoint_url = endpoint_url or settings.action_endpoint_url
        self._timeout = timeout or settings.action_request_timeout_seconds

    async def run(self, request: ActionRequest) -> ActionResult:
        params = _query_params(request)
        logger.info(
            "Calling execute endpoint for task %s (item %s)", request.task_id, request.item_id
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(self._endpoint_url, params=params)
        except httpx.TimeoutException:
            return ActionResult.failed(f"Timeout calling {self._endpoint_url}")
        except httpx.HTTPError as exc:
            logger.exception("Execute endpoint request failed")
            return ActionResult.failed(f"Request failed: {exc}")

        if not resp.is_success:
            return ActionResult.failed(
                f"Execute endpoint returned {resp.status_code}: {resp.text[:MAX_ERROR_BODY]}"
            )

        try:
            return ActionResult.model_validate(resp.json())
        except (ValueError, PydanticValidationError):
            # A 2xx without our result envelope still means the run happened.
            logger.warning("Execute endpoint gave no result body for task %s", request.task_id)
            return ActionResult.ok()
