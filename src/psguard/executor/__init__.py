"""
Executor backends.
"""

from psguard.executor._base import Executor
from psguard.executor.interpreter import Interpreter
from psguard.executor.process import ProcessExecutor

__all__ = [
    "Executor",
    "Interpreter",
    "ProcessExecutor",
]
