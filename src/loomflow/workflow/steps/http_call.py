"""HTTP action processor for the workflow engine."""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from ...errors.models import ActionError
from ..context import ExecutionContext
from ..models import ActionOutcome, HttpAction

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

logger = logging.getLogger(__name__)


class HttpProcessor:
    """Processes Http actions with an httpx async client."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: HttpAction, context: ExecutionContext) -> ActionOutcome:
        """
        Send the request described by an Http action.

        Args:
            name: Action name
            action: The Http action to process
            context: Current execution context

        Returns:
            ActionOutcome whose output is ``{status, headers, body}``; a 4xx/5xx
            response is a failure that still carries the response
        """
        evaluator = self.dispatcher.evaluator
        url = await evaluator.evaluate(action.url, context)
        headers = await evaluator.evaluate_inputs(action.headers, context)
        body = await evaluator.evaluate_inputs(action.body, context)

        request_kwargs: dict[str, Any] = {"headers": headers or None}
        if isinstance(body, Mapping | list):
            request_kwargs["json"] = body
        elif body is not None:
            request_kwargs["content"] = str(body)

        client = self.dispatcher.collaborators.http_client
        logger.debug(f"Http action '{name}': {action.method} {url}")
        if client is not None:
            response = await client.request(action.method, url, **request_kwargs)
        else:
            async with httpx.AsyncClient(timeout=self.dispatcher.config.http_timeout_seconds) as owned_client:
                response = await owned_client.request(action.method, url, **request_kwargs)

        output = {"status": response.status_code, "headers": dict(response.headers), "body": _decode_body(response)}
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = ActionError(code="HttpStatusError", message=str(e), action=name, details={"status": response.status_code})
            return ActionOutcome.failure(error, output=output)
        return ActionOutcome.success(output)


def _decode_body(response: httpx.Response) -> Any:
    """JSON when the body parses as JSON, text otherwise."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
