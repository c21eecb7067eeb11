#!/usr/bin/env python3
"""
Browser Tool Module

Headless Chromium sessions driven through Playwright's async API. Each
session is a BROWSER task in the agent's background registry; cleanup()
closes the context and the browser and marks the task COMPLETED.

Tools:
- sessionStart:   launch a browser, optionally open a URL
- sessionMessage: goto / click / type / wait / content / close

Requires the `playwright` package and `playwright install chromium`.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tools.background import BackgroundTaskRegistry, TaskKind, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
NAVIGATION_SETTLE = 3.0
CLICK_SETTLE = 1.0


@dataclass
class BrowserSession:
    playwright: Any
    browser: Any
    context: Any
    page: Any


class BrowserReclaimer:
    """Closes whatever part of a session exists: context, browser, driver."""

    def __init__(self, session: BrowserSession):
        self.session = session

    async def reclaim(self):
        session = self.session
        steps = []
        if session.context is not None:
            steps.append(session.context.close)
        if session.browser is not None:
            steps.append(session.browser.close)
        if session.playwright is not None:
            steps.append(session.playwright.stop)

        first_error = None
        for step in steps:
            try:
                await step()
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error


class BrowserSessionManager:
    """Browser sessions for one agent, tracked in its background registry."""

    def __init__(self, registry: BackgroundTaskRegistry, log: Optional[logging.Logger] = None):
        self.registry = registry
        self.log = log or logger
        self._sessions: Dict[str, BrowserSession] = {}

    def get(self, session_id: str) -> Optional[BrowserSession]:
        return self._sessions.get(session_id)

    async def start(self, url: Optional[str] = None, timeout: float = 30.0, headless: bool = True,
                    user_agent: str = DEFAULT_USER_AGENT):
        """Launch a session; returns (session_id, page text or "")."""
        from playwright.async_api import async_playwright

        session_id = self.registry.register(TaskKind.BROWSER, {"url": url, "headless": headless})
        playwright = browser = context = None
        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(headless=headless)
            context = await browser.new_context(viewport={"width": 1280, "height": 800}, user_agent=user_agent)
            page = await context.new_page()
            page.set_default_timeout(timeout * 1000)
        except Exception as e:
            partial = BrowserSession(playwright, browser, context, None)
            try:
                await BrowserReclaimer(partial).reclaim()
            except Exception as close_error:
                self.log.warning("Could not release a partly started browser: %s", close_error)
            self.registry.update_status(session_id, TaskStatus.ERROR, {"error": str(e)})
            raise

        session = BrowserSession(playwright, browser, context, page)
        self._sessions[session_id] = session
        self.registry.attach(session_id, BrowserReclaimer(session))

        content = ""
        if url:
            content = await self.goto(session_id, url)
        return session_id, content

    async def goto(self, session_id: str, url: str) -> str:
        page = self._require(session_id).page
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except Exception as e:
            self.log.warning("Navigation with domcontentloaded failed (%s), retrying plain goto", e)
            await page.goto(url)
        await asyncio.sleep(NAVIGATION_SETTLE)
        self.registry.update_status(session_id, TaskStatus.RUNNING, {"url": url})
        return await self.content(session_id)

    async def content(self, session_id: str, content_filter: str = "text") -> str:
        page = self._require(session_id).page
        if content_filter == "raw":
            return await page.content()
        return await page.inner_text("body")

    async def close(self, session_id: str):
        session = self._require(session_id)
        await BrowserReclaimer(session).reclaim()
        del self._sessions[session_id]
        self.registry.update_status(session_id, TaskStatus.COMPLETED, {"closedByAgent": True})

    def _require(self, session_id: str) -> BrowserSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"No browser session found with ID {session_id}")
        return session


def _selector(selector: str, selector_type: str) -> str:
    if selector_type == "xpath":
        return f"xpath={selector}"
    if selector_type == "text":
        return f"text={selector}"
    return selector


# =============================================================================
# Tools
# =============================================================================

class SessionStartParams(BaseModel):
    url: Optional[str] = Field(None, description="Initial URL to navigate to")
    timeout: float = Field(30.0, gt=0, description="Default timeout in seconds for page operations (default: 30)")
    description: str = Field(description="The reason for starting this browser session (max 80 chars)")


class SessionMessageParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    instance_id: str = Field(alias="instanceId", description="The ID returned by sessionStart")
    action_type: Literal["goto", "click", "type", "wait", "content", "close"] = Field(
        alias="actionType", description="Browser action to perform"
    )
    url: Optional[str] = Field(None, description='URL to navigate to for "goto"')
    selector: Optional[str] = Field(None, description='Selector for "click", "type" and "wait"')
    selector_type: Literal["css", "xpath", "text"] = Field("css", alias="selectorType", description="Type of selector")
    text: Optional[str] = Field(None, description='Text to type for "type"')
    content_filter: Literal["text", "raw"] = Field(
        "text", alias="contentFilter", description="Return visible text or raw HTML"
    )
    description: str = Field(description="The reason for this browser action (max 80 chars)")


async def session_start_tool(params: SessionStartParams, context) -> str:
    session_id, content = await context.browser_sessions.start(
        url=params.url, timeout=params.timeout, headless=context.headless
    )
    return json.dumps({"instanceId": session_id, "status": "initialized", "content": content}, ensure_ascii=False)


async def session_message_tool(params: SessionMessageParams, context) -> str:
    manager = context.browser_sessions
    session_id = params.instance_id
    session = manager.get(session_id)
    if session is None:
        return json.dumps({"status": "error", "error": f"No browser session found with ID {session_id}"})

    action = params.action_type
    if action == "goto":
        if not params.url:
            raise ValueError("URL required for goto action")
        content = await manager.goto(session_id, params.url)
        return json.dumps({"status": "success", "content": content}, ensure_ascii=False)

    if action == "close":
        await manager.close(session_id)
        return json.dumps({"status": "closed"})

    if action == "content":
        content = await manager.content(session_id, params.content_filter)
        return json.dumps({"status": "success", "content": content}, ensure_ascii=False)

    if not params.selector:
        raise ValueError(f"Selector required for {action} action")
    selector = _selector(params.selector, params.selector_type)

    if action == "click":
        await session.page.click(selector)
        await asyncio.sleep(CLICK_SETTLE)
        content = await manager.content(session_id, params.content_filter)
        return json.dumps({"status": "success", "content": content}, ensure_ascii=False)

    if action == "type":
        if params.text is None:
            raise ValueError("Text required for type action")
        await session.page.fill(selector, params.text)
        return json.dumps({"status": "success"})

    await session.page.wait_for_selector(selector)
    return json.dumps({"status": "success"})


def _check_playwright() -> bool:
    try:
        import playwright  # noqa: F401
    except ImportError:
        return False
    return True


def _log_session_message(params: SessionMessageParams, context):
    target = params.url or params.selector or ""
    context.logger.info("%s %s, %s", params.action_type, target, params.description)


# --- Registry ---
from tools.registry import registry

registry.register(
    name="sessionStart",
    toolset="browser",
    description="Starts a headless browser session. Use sessionMessage with the returned instanceId to interact with it.",
    parameters=SessionStartParams,
    handler=session_start_tool,
    check_fn=_check_playwright,
)

registry.register(
    name="sessionMessage",
    toolset="browser",
    description="Performs actions in an active browser session",
    parameters=SessionMessageParams,
    handler=session_message_tool,
    log_parameters=_log_session_message,
    check_fn=_check_playwright,
)
