from datetime import datetime

from pydantic import BaseModel, Field


class User(BaseModel):
    id: str
    email: str
    name: str = ""
    role: str = "user"  # "user" | "admin"
    created_at: datetime = Field(default_factory=datetime.utcnow)
