# event_backup/schemas/credentials.py
from pydantic import BaseModel
from typing import Optional


class UnifiCredentials(BaseModel):
    hostname: str = ""
    username: str = ""
    password: str = ""
    apikey: Optional[str] = None

    class Config:
        extra = "ignore"
