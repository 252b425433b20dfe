"""gharun: run GitHub Actions workflows on a local machine.

The package is organised leaf to root:

- ``gharun.expressions``: the ``${{ }}`` expression language.
- ``gharun.model``: workflow, action and matrix documents plus run records.
- ``gharun.context``: the run context that expressions resolve against.
- ``gharun.runner``: task runner, executor and the step/job/workflow planners.
"""

from __future__ import annotations

__version__ = "0.1.0"
