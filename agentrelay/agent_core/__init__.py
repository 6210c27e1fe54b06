"""Agent core: domain schemas, tools, context retrieval, LLM boundary and runtime."""
