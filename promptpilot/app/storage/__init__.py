from .context_store import ContextStore, UserContext
from .history_store import HistoryStore, PromptHistoryEntry, RouterDecisionSummary

__all__ = [
    "ContextStore",
    "UserContext",
    "HistoryStore",
    "PromptHistoryEntry",
    "RouterDecisionSummary",
]
