"""Run-time contexts resolved by ``${{ }}`` expressions."""

from __future__ import annotations

from gharun.context.run_context import RunContext

__all__ = ["RunContext"]
