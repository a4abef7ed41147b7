from .invoke_handler import ActionFn, ActionHandler, InvocationDispatcher

__all__ = ["ActionFn", "ActionHandler", "InvocationDispatcher"]
