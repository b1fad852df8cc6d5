from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Attachment(BaseModel):
    key: str = ""
    name: str = ""
    type: str = ""
    file_review_state: int = 0
    file_parse_state: int = 0
    identifier: str = ""
    option: Optional[Dict[str, Any]] = None
    md5: str = ""
    size: int = 0


class CompletionRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    guest: bool = False
    attachments: List[Attachment] = Field(default_factory=list)
    conversation_id: str = ""
    section_id: str = ""
    use_deep_think: bool = False
    use_auto_cot: bool = False


class CompletionResponse(BaseModel):
    text: str = ""
    img_urls: List[str] = Field(default_factory=list)
    conversation_id: str = ""
    message_id: str = ""
    section_id: str = ""

    @computed_field
    @property
    def messageg_id(self) -> str:
        """Legacy spelling still read by existing clients."""
        return self.message_id


class DeleteResponse(BaseModel):
    ok: bool
    msg: str = ""


class UploadResponse(Attachment):
    pass


# --- Upstream request bodies ---


class CompletionOption(BaseModel):
    is_regen: bool = False
    with_suggest: bool = False
    need_create_conversation: bool = False
    launch_stage: int = 1
    use_auto_cot: bool = False
    use_deep_think: bool = False


class ChatMessage(BaseModel):
    role: int = 0
    content: str
    content_type: int = 2001
    attachments: List[Attachment] = Field(default_factory=list)
    references: List[Any] = Field(default_factory=list)


class ChatPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    completion_option: CompletionOption
    conversation_id: str
    messages: List[ChatMessage]
    section_id: Optional[str] = None
    local_conversation_id: Optional[str] = None
    local_message_id: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class TextPrompt(BaseModel):
    """Inner document the upstream expects JSON-encoded inside `messages[].content`."""

    text: str
