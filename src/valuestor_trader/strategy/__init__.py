"""Strategy package exports."""

from .decision_engine import DecisionEngine
from .orchestrator import TradingOrchestrator, apply_execution
from .reasoning import OpenAIReasoningService, ReasoningService

__all__ = [
    "DecisionEngine",
    "OpenAIReasoningService",
    "ReasoningService",
    "TradingOrchestrator",
    "apply_execution",
]
