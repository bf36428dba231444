from .models import PromptSet, PromptVersion
from .repository import PromptSetRepository

__all__ = [
    "PromptSet",
    "PromptVersion",
    "PromptSetRepository",
]
