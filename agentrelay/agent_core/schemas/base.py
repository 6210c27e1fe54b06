"""Common base model for agentrelay domain objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base for agents, execution steps, tool descriptors, events and webhook records.

    Fields may be populated by alias (``additionalProperties``, ``minLength``)
    or by name. Unknown keys are rejected so that a misspelled field in a
    stored step or an API payload fails loudly instead of being dropped.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")
