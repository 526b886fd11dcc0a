from pydantic import BaseModel, ConfigDict
from typing import List, Optional, Union

# --- AI FEEDBACK RESPONSE CONTRACT ---

class ContentPart(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    text: Optional[str] = None

class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Optional[str] = "assistant"
    # Providers answer either with a plain string or a list of content parts
    content: Union[str, List[ContentPart]]

class ChatResponse(BaseModel):
    message: ChatMessage
