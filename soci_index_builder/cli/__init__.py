"""SOCI Index Builder CLI: Typer-based command-line interface.

Runs the invocation pipeline locally against a saved event, validates
events, and resolves registry hosts. All output uses Rich.
"""
