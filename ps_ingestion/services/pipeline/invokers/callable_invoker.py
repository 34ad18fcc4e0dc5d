"""Invoker wrapping a local callable."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from ps_ingestion.models import StageName
from ps_ingestion.services.pipeline.invoker import StageInvoker

StageCallable = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


class CallableStageInvoker(StageInvoker):
    """Run a stage as a plain function ``(payload) -> output``.

    Coroutine functions are awaited directly; regular functions run in a
    worker thread so the timeout still applies while they block.
    """

    def __init__(
        self,
        func: StageCallable,
        timeout_seconds: float = 300.0,
        name: Optional[str] = None,
    ):
        super().__init__(timeout_seconds, name or getattr(func, "__name__", None))
        self.func = func

    async def execute(
        self,
        stage_name: StageName,
        payload: str,
        run_context: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(payload)

        result: Any = await asyncio.to_thread(self.func, payload)
        if inspect.isawaitable(result):
            result = await result
        return result
