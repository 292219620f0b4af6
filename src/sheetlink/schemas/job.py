"""Pydantic schemas for the jobs API.

- JobCreate: generic submission (any registered kind + JSON payload)
- ColumnTransformRequest: typed body for the column-transform job
- JobAccepted: what POST returns (202) — the id to poll
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_wire = ConfigDict(alias_generator=to_camel, populate_by_name=True)

OperationType = Literal["SUMMARIZE", "SCORE_ALIGNMENT", "EXTRACT_TERMS"]


class JobCreate(BaseModel):
    kind: str = Field(default="column_transform", min_length=1, max_length=64)
    payload: dict[str, Any] = Field(default_factory=dict)


class Operation(BaseModel):
    type: OperationType
    parameters: Optional[dict[str, Any]] = None


class ColumnTransformRequest(BaseModel):
    model_config = _wire

    sheet_id: str = Field(..., min_length=1)
    source_columns: list[str] = Field(..., min_length=1)
    target_column: str = Field(..., min_length=1)
    operation: Operation


class JobAccepted(BaseModel):
    model_config = _wire

    job_id: str
    status: str
