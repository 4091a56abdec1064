"""Uniform stage contract shared by every pipeline stage."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Generic

from code_agent.obs.tracing import Timer
from code_agent.types import AgentResponse, AgentTask, K

logger = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], AgentResponse]


class Stage(ABC, Generic[K]):
    """One pipeline stage behind a single ``handle(task)`` entry point.

    Each stage declares a closed ``TaskKind`` enum and maps every member to a
    handler. The mapping is checked for exhaustiveness at construction, so a
    new task kind without a handler fails immediately instead of surfacing
    as an "unknown task" response at query time.
    """

    name: str
    task_kinds: type[K]

    def __init__(self) -> None:
        handlers = self._handlers()
        missing = [kind for kind in self.task_kinds if kind not in handlers]
        if missing:
            raise TypeError(f"{self.name} has no handler for {missing}")
        self._dispatch: dict[K, Handler] = dict(handlers)

    @abstractmethod
    def _handlers(self) -> Mapping[K, Handler]:
        """Return the handler for each member of ``task_kinds``."""

    def handle(self, task: AgentTask[K]) -> AgentResponse:
        """Run ``task``; handler exceptions become a failed response.

        A task kind that belongs to another stage is a wiring bug and raises
        ``TypeError`` rather than producing a response.
        """

        if not isinstance(task.kind, self.task_kinds):
            raise TypeError(f"{self.name} cannot handle task kind {task.kind!r}")

        handler = self._dispatch[task.kind]
        with Timer() as timer:
            try:
                response = handler(task.data)
            except Exception as exc:
                logger.error("%s failed on %s: %s", self.name, task.kind.value, exc)
                response = AgentResponse.failure(str(exc) or type(exc).__name__)
        response.metadata.execution_time_ms = timer.elapsed_ms
        return response
