#!/usr/bin/env python3
"""
Background Task Registry

Tracks every long-lived side effect an agent creates: shell processes,
browser sessions and sub-agents. Each agent owns one registry (carried on its
ToolContext); sub-agents get their own, which the parent reclaims through the
sub-agent's reclaimer.

Lifecycle:
- register() hands out an id BEFORE the OS resource exists, so a spawn
  failure can still be recorded against it.
- attach() binds a Reclaimable once the resource exists.
- update_status() moves a task from RUNNING to a terminal status exactly
  once. Terminal statuses are final; later updates are rejected.
- cleanup() reclaims every RUNNING task concurrently. One task failing to
  reclaim marks only that task ERROR.

Usage:
    registry = BackgroundTaskRegistry()
    task_id = registry.register(TaskKind.SHELL, {"command": "sleep 10"})
    registry.attach(task_id, reclaimer)
    ...
    await registry.cleanup()
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class TaskKind(Enum):
    SHELL = "shell"
    BROWSER = "browser"
    AGENT = "agent"


class TaskStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.RUNNING


# Status a task ends in once its reclaimer ran without raising.
RECLAIMED_STATUS = {
    TaskKind.SHELL: TaskStatus.TERMINATED,
    TaskKind.BROWSER: TaskStatus.COMPLETED,
    TaskKind.AGENT: TaskStatus.TERMINATED,
}


class Reclaimable(Protocol):
    """A resource cleanup() knows how to release."""

    async def reclaim(self) -> None:
        ...

    def kill_now(self) -> None:
        ...


@dataclass
class BackgroundTask:
    id: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.RUNNING
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    reclaimer: Optional[Reclaimable] = None

    @property
    def runtime(self) -> float:
        """Seconds between start and end (or now, while running)."""
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    def to_dict(self, verbose: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.kind.value,
            "status": self.status.value,
            "startTime": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.start_time)),
            "endTime": (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.end_time))
                if self.end_time is not None else None
            ),
            "runtime": round(self.runtime, 2),
        }
        if verbose:
            data["metadata"] = self.metadata
        return data


class BackgroundTaskRegistry:
    """In-process table of background tasks for one agent."""

    def __init__(self, owner: str = "agent"):
        self.owner = owner
        self._tasks: Dict[str, BackgroundTask] = {}

    # =========================================================================
    # Registration and status
    # =========================================================================

    def register(self, kind: TaskKind, metadata: Optional[Dict[str, Any]] = None,
                 task_id: Optional[str] = None) -> str:
        """
        Create a RUNNING task and return its id.

        Raises:
            ValueError: task_id is already registered
        """
        task_id = task_id or str(uuid.uuid4())
        if task_id in self._tasks:
            raise ValueError(f"Task {task_id} is already registered")
        self._tasks[task_id] = BackgroundTask(id=task_id, kind=kind, metadata=dict(metadata or {}))
        logger.debug("[%s] registered %s task %s", self.owner, kind.value, task_id)
        return task_id

    def attach(self, task_id: str, reclaimer: Reclaimable) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        task.reclaimer = reclaimer
        return True

    def update_status(self, task_id: str, status: TaskStatus,
                      metadata: Optional[Dict[str, Any]] = None) -> bool:
        """
        Record a status change.

        Returns False for unknown ids and for tasks already in a terminal
        status; those are left untouched, metadata included. end_time is
        stamped on the first terminal transition.
        """
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("[%s] status update for unknown task %s", self.owner, task_id)
            return False
        if task.status.is_terminal:
            logger.debug(
                "[%s] ignoring %s for task %s, already %s",
                self.owner, status.value, task_id, task.status.value,
            )
            return False

        task.status = status
        if metadata:
            task.metadata.update(metadata)
        if status.is_terminal:
            task.end_time = time.time()
        return True

    def get_task(self, task_id: str) -> Optional[BackgroundTask]:
        return self._tasks.get(task_id)

    def get_tasks(self, status: Optional[TaskStatus] = None,
                  kind: Optional[TaskKind] = None) -> List[BackgroundTask]:
        tasks = list(self._tasks.values())
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        if kind is not None:
            tasks = [t for t in tasks if t.kind is kind]
        return tasks

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def cleanup(self):
        """
        Reclaim every RUNNING task.

        Tasks are reclaimed concurrently, each under its own error capture, so
        a shell that refuses to die cannot stop a browser from closing.
        """
        running = self.get_tasks(TaskStatus.RUNNING)
        if not running:
            return
        logger.info("[%s] cleaning up %d background task(s)", self.owner, len(running))
        await asyncio.gather(*(self._reclaim(task) for task in running))

    async def _reclaim(self, task: BackgroundTask):
        try:
            if task.reclaimer is not None:
                await task.reclaimer.reclaim()
            self.update_status(task.id, RECLAIMED_STATUS[task.kind], {"reclaimed": True})
        except Exception as e:
            logger.error("[%s] failed to clean up %s task %s: %s",
                         self.owner, task.kind.value, task.id, e)
            self.update_status(task.id, TaskStatus.ERROR, {"error": str(e)})

    def cleanup_sync(self):
        """Best-effort synchronous kill for interpreter shutdown (atexit)."""
        for task in self.get_tasks(TaskStatus.RUNNING):
            if task.reclaimer is None:
                continue
            kill_now = getattr(task.reclaimer, "kill_now", None)
            if kill_now is None:
                continue
            try:
                kill_now()
                self.update_status(task.id, TaskStatus.TERMINATED, {"reclaimed": True})
            except Exception as e:
                logger.debug("[%s] exit-time kill of %s failed: %s", self.owner, task.id, e)
