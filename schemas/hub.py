from datetime import datetime
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from hub_names import COMPLETION_FRAME, EVENT_FRAME, INVOCATION_FRAME


class Invocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["invocation"] = INVOCATION_FRAME
    invocation_id: Optional[Union[str, int]] = Field(None, alias="invocationId")
    target: str
    arguments: List[Any] = []


class Completion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["completion"] = COMPLETION_FRAME
    invocation_id: Optional[Union[str, int]] = Field(None, alias="invocationId")
    result: Any = None
    error: Optional[str] = None


class HubEvent(BaseModel):
    type: Literal["event"] = EVENT_FRAME
    target: str
    arguments: List[Any] = []


class ChatMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(..., alias="userName")
    text: str = Field(..., alias="message")
    timestamp: datetime = Field(..., alias="timeStamp")


class TypingState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(..., alias="userName")
    is_typing: bool = Field(..., alias="isTyping")
    timestamp: datetime = Field(..., alias="timeStamp")
