"""llmcli — run and chat with local text-generation models from the terminal."""

__version__ = "0.3.0"
