"""Message history models.

A history is an ordered list of ``UserMessage`` / ``AssistantMessage`` turns,
each holding typed content items. The models are the single source of truth;
the OpenAI chat format is derived from them on demand:

- ``to_openai()`` - lossy; raises MessageConversionError for content with no
  chat-completions equivalent (audio, video, documents).
- ``to_generic()`` - lossless JSON dump of the models.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

ContentFormat = Literal["string", "base64"]
ImageDetail = Literal["low", "high", "auto"]


class MessageConversionError(ValueError):
    """A message has content that cannot be expressed in the target format."""


# ---------------------------------------------------------------------------
# Content items
# ---------------------------------------------------------------------------


class Text(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResultText(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResultImage(BaseModel):
    type: Literal["image"] = "image"
    data: str
    format: ContentFormat | None = None
    media_type: str | None = None
    detail: ImageDetail | None = None


ToolResultContent = Annotated[
    Union[ToolResultText, ToolResultImage], Field(discriminator="type")
]


class ToolResult(BaseModel):
    """Result of one tool call, sent back to the model in a user turn."""

    type: Literal["tool_result"] = "tool_result"
    id: str
    call_id: str | None = None
    content: list[ToolResultContent] = Field(default_factory=list)

    def text(self) -> str:
        return "\n".join(c.text for c in self.content if isinstance(c, ToolResultText))


class Image(BaseModel):
    type: Literal["image"] = "image"
    data: str
    format: ContentFormat | None = None
    media_type: str | None = None
    detail: ImageDetail | None = None


class Audio(BaseModel):
    type: Literal["audio"] = "audio"
    data: str
    format: ContentFormat | None = None
    media_type: str | None = None


class DocumentContent(BaseModel):
    type: Literal["document"] = "document"
    data: str
    format: ContentFormat | None = None
    media_type: str | None = None


class Video(BaseModel):
    type: Literal["video"] = "video"
    data: str
    format: ContentFormat | None = None
    media_type: str | None = None


UserContent = Annotated[
    Union[Text, ToolResult, Image, Audio, DocumentContent, Video],
    Field(discriminator="type"),
]


class ToolFunction(BaseModel):
    name: str
    arguments: Any = Field(default_factory=dict)

    def arguments_json(self) -> str:
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments)


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    type: Literal["tool_call"] = "tool_call"
    id: str
    call_id: str | None = None
    function: ToolFunction


class Reasoning(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: list[str] = Field(default_factory=list)


AssistantContent = Annotated[
    Union[Text, ToolCall, Reasoning], Field(discriminator="type")
]


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


class UserMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user"] = "user"
    content: list[UserContent]


class AssistantMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] = "assistant"
    id: str | None = None
    content: list[AssistantContent]


Message = Annotated[Union[UserMessage, AssistantMessage], Field(discriminator="role")]

MessageList = TypeAdapter(list[Message])


def user_text(text: str) -> UserMessage:
    """A user turn holding one text item."""
    return UserMessage(content=[Text(text=text)])


def tool_result(id: str, output: str, call_id: str | None = None) -> UserMessage:
    """A user turn holding one textual tool result."""
    return UserMessage(
        content=[ToolResult(id=id, call_id=call_id, content=[ToolResultText(text=output)])]
    )


# ---------------------------------------------------------------------------
# Format conversion
# ---------------------------------------------------------------------------


def _image_url(data: str, format: str | None, media_type: str | None) -> str:
    if format == "base64":
        return f"data:{media_type or 'image/png'};base64,{data}"
    return data


def _user_to_openai(message: UserMessage) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    parts: list[dict[str, Any]] = []
    for item in message.content:
        if isinstance(item, ToolResult):
            for c in item.content:
                if not isinstance(c, ToolResultText):
                    raise MessageConversionError("image tool results have no chat-completions form")
            out.append({
                "role": "tool",
                "tool_call_id": item.id,
                "content": item.text(),
            })
        elif isinstance(item, Text):
            parts.append({"type": "text", "text": item.text})
        elif isinstance(item, Image):
            image_url: dict[str, Any] = {"url": _image_url(item.data, item.format, item.media_type)}
            if item.detail:
                image_url["detail"] = item.detail
            parts.append({"type": "image_url", "image_url": image_url})
        else:
            raise MessageConversionError(f"{item.type} content has no chat-completions form")

    if parts:
        if all(p["type"] == "text" for p in parts):
            content: Any = "\n".join(p["text"] for p in parts)
        else:
            content = parts
        out.append({"role": "user", "content": content})
    return out


def _assistant_to_openai(message: AssistantMessage) -> dict[str, Any]:
    texts: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    for item in message.content:
        if isinstance(item, Text):
            texts.append(item.text)
        elif isinstance(item, ToolCall):
            tool_calls.append({
                "id": item.id,
                "type": "function",
                "function": {
                    "name": item.function.name,
                    "arguments": item.function.arguments_json(),
                },
            })
        # reasoning is not replayed to chat-completions providers

    out: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
    if tool_calls:
        out["tool_calls"] = tool_calls
    elif out["content"] is None:
        out["content"] = ""
    return out


def to_openai(messages: list[UserMessage | AssistantMessage]) -> list[dict[str, Any]]:
    """Convert a history to OpenAI chat messages. One user turn may expand to several."""
    out: list[dict[str, Any]] = []
    for message in messages:
        if isinstance(message, UserMessage):
            out.extend(_user_to_openai(message))
        else:
            out.append(_assistant_to_openai(message))
    return out


def to_generic(messages: list[UserMessage | AssistantMessage]) -> list[dict[str, Any]]:
    """Lossless JSON-compatible dump of a history."""
    return [m.model_dump(mode="json") for m in messages]
