"""
Deck pipeline runtime: stages, generation boundary and session orchestration.
"""

from .cancellation import CancellationToken, OperationCancelled
from .generation import GenerationRequest, GenerationResult, LiteLLMGenerator, SystemBlock, TextGenerator
from .orchestration import DeckRuntime, DeckStore

__all__ = [
    "CancellationToken",
    "DeckRuntime",
    "DeckStore",
    "GenerationRequest",
    "GenerationResult",
    "LiteLLMGenerator",
    "OperationCancelled",
    "SystemBlock",
    "TextGenerator",
]
