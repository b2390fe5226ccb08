from .registry import Action, ActionExecutor, ActionRegistry

__all__ = ["Action", "ActionExecutor", "ActionRegistry"]
