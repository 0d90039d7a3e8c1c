"""Framework integrations for psguard."""

from psguard.integrations.langchain import create_langchain_tools

__all__ = ["create_langchain_tools"]
