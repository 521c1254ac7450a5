"""
Bridge request envelopes.

Field names stay camelCase because they are the wire contract shared with
the automation script and the main backend.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Assignment(BaseModel):
    resourceName: str
    taskName: str


class AssignRequest(BaseModel):
    """One project's assignment batch; the name must be a non-blank string"""
    model_config = ConfigDict(str_strip_whitespace=True)

    projectName: str = Field(min_length=1)
    assignments: List[Assignment] = Field(min_length=1)
