"""Pydantic schemas for Smartsheet webhook callbacks.

Learn: Smartsheet POSTs two different bodies to the same URL:
- a verification challenge when the webhook is enabled
- a batch of change events afterwards

Each shape is its own model; parse_webhook_body() in the receiver tries
them in order and the model class that matched is the tag. Wire names are
camelCase, Python attributes snake_case.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_wire = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class WebhookChallenge(BaseModel):
    model_config = _wire

    challenge: str
    webhook_id: str


class Change(BaseModel):
    model_config = _wire

    object_type: Literal["sheet", "row"]
    action: Literal["created", "updated", "deleted"]
    id: str
    timestamp: str


class WebhookEventBatch(BaseModel):
    model_config = _wire

    webhook_id: str
    scope: str
    scope_object_id: str  # sheet id
    events: list[Change]


WebhookBody = WebhookChallenge | WebhookEventBatch
