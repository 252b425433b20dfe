"""Shared test fixtures for the gharun test suite.

Executor Fakes (from tests/fixtures/executors.py)
-------------------------------------------------

Classes:
    Response: Canned exit code, output and environment file contents for a
        step command.

    ScriptedExecutor: Executor that records every request and answers with
        the Response whose marker appears in the step script.
"""
