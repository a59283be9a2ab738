# bulkdispatch/transport/schemas.py
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bulkdispatch.core.domain import RecipientSource, StartCommand


class StartSendingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1, max_length=4096)
    source: Literal["random", "paste", "file"] = "paste"
    quantity: int | None = Field(default=None, ge=1)
    number_list: str | None = Field(default=None, alias="numberList")
    image_url: str | None = Field(default=None, alias="imageUrl", max_length=2048)

    @field_validator("quantity", mode="before")
    @classmethod
    def _blank_quantity(cls, value):
        # form inputs send "" when the quantity box is left empty
        return None if value == "" else value

    def to_command(self) -> StartCommand:
        return StartCommand(
            message=self.message,
            source=RecipientSource(self.source),
            quantity=self.quantity,
            number_list=self.number_list,
            image_url=self.image_url,
        )


class ProgressOut(BaseModel):
    sent: int
    failed: int
    total: int
    remaining: int


class DispatchStatusOut(BaseModel):
    state: str
    session_id: str | None
    is_sending: bool
    progress: ProgressOut | None
    transport: str
    transport_connected: bool
    observers: int
    recipients: dict[str, int] | None = None


class CommandAccepted(BaseModel):
    accepted: bool
    detail: str
