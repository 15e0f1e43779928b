"""Pydantic models for API request/response schemas and panel messages."""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialized with camelCase keys, as the panel expects."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class FileInfoSchema(CamelModel):
    """File metadata shown next to an attachment."""

    name: str
    kind: str
    size: int
    language: str


# --- Panel -> core ---


class SendMessage(CamelModel):
    command: Literal["sendMessage"]
    text: str


class GetFileSuggestions(CamelModel):
    command: Literal["getFileSuggestions"]
    partial: str = ""


class GetFileContent(CamelModel):
    command: Literal["getFileContent"]
    file_path: str


class WebviewReady(CamelModel):
    command: Literal["webviewReady"]


class NewChat(CamelModel):
    command: Literal["newChat"]


InboundMessage = Annotated[
    Union[SendMessage, GetFileSuggestions, GetFileContent, WebviewReady, NewChat],
    Field(discriminator="command"),
]
inbound_adapter = TypeAdapter(InboundMessage)


# --- Core -> panel ---


class ReceiveMessage(CamelModel):
    command: Literal["receiveMessage"] = "receiveMessage"
    text: str


class FileAccessError(CamelModel):
    command: Literal["fileAccessError"] = "fileAccessError"
    files: list[str]


class FileAttachment(CamelModel):
    command: Literal["fileAttachment"] = "fileAttachment"
    file_path: str
    content: str
    file_info: FileInfoSchema


class FileSuggestions(CamelModel):
    command: Literal["fileSuggestions"] = "fileSuggestions"
    suggestions: list[str]


class FileContent(CamelModel):
    command: Literal["fileContent"] = "fileContent"
    file_path: str
    content: str
    file_info: FileInfoSchema


class LoadChatHistory(CamelModel):
    command: Literal["loadChatHistory"] = "loadChatHistory"
    messages: list[dict]


class WorkspaceInfo(CamelModel):
    command: Literal["workspaceInfo"] = "workspaceInfo"
    folders: list[str]


# --- REST ---


class MessageSchema(CamelModel):
    """A persisted chat turn."""

    id: str
    text: str
    sender: str
    created_at: datetime
    attachment: Optional[dict[str, str]] = None


class SessionSummary(CamelModel):
    """A chat session without its messages."""

    id: str
    workspace_scope: str
    last_updated: datetime
    message_count: int
    preview: str = ""


class SessionDetail(CamelModel):
    """A chat session with its full message list."""

    id: str
    workspace_scope: str
    last_updated: datetime
    messages: list[MessageSchema]


class FileSuggestionsResponse(BaseModel):
    suggestions: list[str]


class FileContentResponse(CamelModel):
    file_path: str
    content: str
    file_info: FileInfoSchema


class SuccessResponse(BaseModel):
    """Generic success response."""

    success: bool
    message: str | None = None
