"""agentrelay: LLM agent execution engine with signed webhook delivery."""

__version__ = "0.1.0"
