from typing import Optional

from pydantic import BaseModel, Field


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: str
    refresh_expires_in: str
    token_type: str = "Bearer"

    def as_response(self) -> dict:
        """Wire shape shared by login, register and refresh."""
        return {
            "token": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "refreshExpiresIn": self.refresh_expires_in,
            "tokenType": self.token_type,
        }


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = {"populate_by_name": True}


class LogoutRequest(RefreshRequest):
    pass
