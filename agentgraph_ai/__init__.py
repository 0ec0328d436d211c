"""agentgraph-ai: a resumable predict/execute agent runtime."""

__version__ = "0.1.0"
