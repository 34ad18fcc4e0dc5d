"""Stage invoker implementations."""

from .callable_invoker import CallableStageInvoker
from .lambda_invoker import LambdaStageInvoker

__all__ = [
    "CallableStageInvoker",
    "LambdaStageInvoker",
]
