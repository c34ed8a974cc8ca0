"""Request bodies for the OAuth endpoints."""

from pydantic import BaseModel, model_validator


class TokenExchangeRequest(BaseModel):
    """Either an authorization `code` (OAuth2/PKCE) or `oauth_token` + `oauth_verifier` (OAuth1), plus the issued state."""

    state: str
    code: str | None = None
    oauth_token: str | None = None
    oauth_verifier: str | None = None

    @model_validator(mode="after")
    def _one_grant(self):
        if not self.code and not (self.oauth_token and self.oauth_verifier):
            raise ValueError("Provide code, or oauth_token and oauth_verifier")
        return self
