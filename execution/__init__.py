"""
MiniDoc Execution
=================
Evaluators, physical operators and the executors built on them.
Import the executors from their modules, e.g.

    from execution.executor import Executor
"""
