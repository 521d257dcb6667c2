"""Action processors, one per action family."""

from .conditional import ConditionalProcessor
from .foreach import ForEachProcessor
from .http_call import HttpProcessor
from .invocation import ActivityProcessor, ActorProcessor, AIProcessor, ComposeProcessor
from .parallel import ParallelProcessor
from .retry_step import RetryProcessor
from .scope import ScopeProcessor
from .until_loop import LoopProcessor

# Processor classes keyed by the names used in the step registry
PROCESSORS = {
    "actor": ActorProcessor,
    "activity": ActivityProcessor,
    "ai": AIProcessor,
    "compose": ComposeProcessor,
    "http": HttpProcessor,
    "conditional": ConditionalProcessor,
    "foreach": ForEachProcessor,
    "parallel": ParallelProcessor,
    "loop": LoopProcessor,
    "retry": RetryProcessor,
    "scope": ScopeProcessor,
}

__all__ = [
    "PROCESSORS",
    "ActivityProcessor",
    "ActorProcessor",
    "AIProcessor",
    "ComposeProcessor",
    "ConditionalProcessor",
    "ForEachProcessor",
    "HttpProcessor",
    "LoopProcessor",
    "ParallelProcessor",
    "RetryProcessor",
    "ScopeProcessor",
]
