#!/usr/bin/env python3
"""
Fetch Tool Module

HTTP requests for talking to APIs (not for browsing; use the browser tools
for pages that need rendering). Requests go through aiohttp and the shared
RetryExecutor, so 4xx responses and network errors are retried with
backoff, and a 429 switches the call into slow mode.

Usage:
    {"method": "GET", "url": "https://api.github.com/repos/python/cpython"}
    {"method": "POST", "url": "https://httpbin.org/post", "body": {"a": 1}}
"""

import json
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from agent.errors import RetryExhaustedError
from tools.retry import HttpResponse, RetryExecutor

REQUEST_TIMEOUT = 60
BODYLESS_METHODS = ("GET", "HEAD")


class FetchParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    method: str = Field(description="HTTP method to use (GET, POST, PUT, DELETE, PATCH, HEAD, OPTIONS)")
    url: str = Field(description="URL to make the request to")
    params: Optional[Dict[str, Any]] = Field(None, description="Optional query parameters to append to the URL")
    body: Optional[Dict[str, Any]] = Field(None, description="Optional JSON request body (for POST, PUT, PATCH requests)")
    headers: Optional[Dict[str, str]] = Field(None, description="Optional request headers")
    max_retries: int = Field(
        3, ge=0, le=5, alias="maxRetries",
        description="Maximum number of retries for 4xx errors and network failures (default: 3)",
    )
    retry_delay: int = Field(
        1000, ge=100, le=30000, alias="retryDelay",
        description="Initial delay in ms before retrying (default: 1000)",
    )
    slow_mode: bool = Field(False, alias="slowMode", description="Enable slow mode to avoid rate limits (default: false)")


async def _send_once(session: aiohttp.ClientSession, params: FetchParams) -> HttpResponse:
    method = params.method.upper()
    headers = dict(params.headers or {})
    kwargs: Dict[str, Any] = {"headers": headers}
    if params.params:
        kwargs["params"] = {k: str(v) for k, v in params.params.items()}
    if params.body is not None and method not in BODYLESS_METHODS:
        kwargs["json"] = params.body

    async with session.request(method, params.url, **kwargs) as resp:
        content_type = resp.headers.get("content-type", "")
        if "application/json" in content_type:
            body = await resp.json(content_type=None)
        else:
            body = await resp.text()
        return HttpResponse(
            status=resp.status,
            reason=resp.reason or "",
            headers=dict(resp.headers),
            body=body,
        )


async def fetch_tool(params: FetchParams, context) -> str:
    """
    Perform one HTTP request under the retry policy.

    Returns:
        str: JSON with status, statusText, headers, body, retries and
             slowModeEnabled, or an error when every retry failed
    """
    executor = RetryExecutor(
        max_retries=params.max_retries,
        base_delay=params.retry_delay / 1000,
        slow_mode=params.slow_mode,
        log=context.logger,
    )
    timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)

    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            outcome = await executor.run(lambda: _send_once(session, params))
    except RetryExhaustedError as e:
        return json.dumps({
            "error": str(e),
            "status": e.status,
            "retries": e.retries,
            "slowModeEnabled": executor.slow_mode_enabled,
        }, ensure_ascii=False)

    response = outcome.response
    return json.dumps({
        "status": response.status,
        "statusText": response.reason,
        "headers": response.headers,
        "body": response.body,
        "retries": outcome.retries,
        "slowModeEnabled": outcome.slow_mode_enabled,
    }, ensure_ascii=False)


def _log_fetch(params: FetchParams, context):
    suffix = ""
    if params.max_retries != 3:
        suffix += f" (max retries: {params.max_retries})"
    if params.slow_mode:
        suffix += " (slow mode)"
    context.logger.info("%s %s%s", params.method.upper(), params.url, suffix)


def _log_fetch_returns(output: str, context):
    result = json.loads(output)
    if "error" in result:
        context.logger.info("Request failed: %s", result["error"])
        return
    retries = f" after {result['retries']} retries" if result.get("retries") else ""
    slow = " (slow mode enabled)" if result.get("slowModeEnabled") else ""
    context.logger.info("%s %s%s%s", result["status"], result["statusText"], retries, slow)


# --- Registry ---
from tools.registry import registry

registry.register(
    name="fetch",
    toolset="web",
    description="Executes HTTP requests for using APIs, not for browsing the web.",
    parameters=FetchParams,
    handler=fetch_tool,
    log_parameters=_log_fetch,
    log_returns=_log_fetch_returns,
)
