"""Invocation core: validation, workspace lifecycle, watchdog, pipeline."""
