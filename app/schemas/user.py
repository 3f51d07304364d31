#app/schemas/user.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

class UserProfileRead(BaseModel):
    """
    UserProfileRead — профиль пользователя в ответе API.
    """
    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    firebase_uid: Optional[str] = None
    parent_manager_id: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class LinkExternalIdsRequest(BaseModel):
    firebase_uid: Optional[str] = Field(None, description="UID из Firebase Auth")
