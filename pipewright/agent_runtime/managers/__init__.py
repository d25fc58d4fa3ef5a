"""Data access for the agent runtime.

Each module provides functions that read on-disk definitions into models
and raise domain exceptions (``AgentNotFoundError``,
``AgentDefinitionError``), never CLI errors -- that translation is the
CLI's responsibility.
"""
