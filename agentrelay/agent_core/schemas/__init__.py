"""Domain schemas for agents, tools and execution runs."""
