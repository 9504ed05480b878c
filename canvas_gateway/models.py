from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class TokenExchangeResult(BaseModel):
    """What the Canvas token endpoint hands back for an authorization code.

    Canvas also returns `user` and `refresh_token`; neither is kept.
    """
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1, repr=False)
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


class BoundSession(BaseModel):
    access_token: str = Field(repr=False)
    token_type: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None


class ProxyRequest(BaseModel):
    path: str
    query: str = ""
