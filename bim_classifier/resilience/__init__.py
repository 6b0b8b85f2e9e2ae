from .invoker import ResilientInvoker

__all__ = ["ResilientInvoker"]
