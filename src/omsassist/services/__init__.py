"""Service layer orchestrations for OMS Assist."""

from .chat import ChatPipelineConfig, ChatResult, ChatService
from .context import BuiltContext, ContextBuilder, ContextBuilderConfig, detect_focus, prioritize_orders
from .feedback import SYSTEM_FAILURE_MESSAGE, no_results_message
from .generation import GenerationBackend, GenerationConfig, OpenAIGenerator, SummaryGenerator, build_generator
from .rag import RagAnswer, RagAnswerGenerator, RagContextOptions, RagQuery, build_structured_response

__all__ = [
    "BuiltContext",
    "ChatPipelineConfig",
    "ChatResult",
    "ChatService",
    "ContextBuilder",
    "ContextBuilderConfig",
    "GenerationBackend",
    "GenerationConfig",
    "OpenAIGenerator",
    "RagAnswer",
    "RagAnswerGenerator",
    "RagContextOptions",
    "RagQuery",
    "SYSTEM_FAILURE_MESSAGE",
    "SummaryGenerator",
    "build_generator",
    "build_structured_response",
    "detect_focus",
    "no_results_message",
    "prioritize_orders",
]
