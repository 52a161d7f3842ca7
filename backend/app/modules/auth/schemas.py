from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    AccessToken: str
    RefreshToken: str
    TokenType: str = "bearer"
    ExpiresIn: int
    Username: str
    Role: str
    SchoolId: int | None = None
    FirstName: str | None = None
    LastName: str | None = None


class LoginRequest(BaseModel):
    Username: str = Field(..., max_length=120)
    Password: str = Field(..., max_length=200)


class RefreshRequest(BaseModel):
    RefreshToken: str = Field(..., max_length=400)


class LogoutResponse(BaseModel):
    RevokedTokens: int
    ReleasedLocks: int
