"""Schemas for webhook acknowledgements."""

from typing import Literal

from ._strict_base import StrictModel


class WebhookResponse(StrictModel):
    status: Literal["success"] = "success"
    event_type: str
    handled: bool
