from pydantic import BaseModel, Field
from typing import Optional


class AuthorizeRequest(BaseModel):
    key: str


class AuthorizeResponse(BaseModel):
    status: int  # 1 = accepted, -1 = rejected


class HealthResponse(BaseModel):
    status: str
    timestamp: int
    service: str


class AddKeyRequest(BaseModel):
    max_usage: Optional[int] = Field(default=None, gt=0)
    valid_days: Optional[int] = Field(default=None, gt=0)


class AddKeyResponse(BaseModel):
    key: str
    message: str
    expires: str


class StatsResponse(BaseModel):
    total_keys: int
    valid_keys: int
    total_usage: int
    server_time: str
