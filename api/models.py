"""
API request and response models for marketauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.

Phone numbers are accepted loosely here (length-capped strings) and normalized
by the gateway, so "+998 90 123-45-67" and "901234567" both work.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Admin, OtpPurpose, TokenPair, User

_Phone = Annotated[str, Field(min_length=7, max_length=32)]
_Code = Annotated[str, Field(min_length=4, max_length=8, pattern=r"^\d+$")]
# bcrypt reads 72 bytes; the cap keeps ASCII passwords under it.
_Password = Annotated[str, Field(min_length=8, max_length=72)]


# ---------------------------------------------------------------------------
# Request models -- participant
# ---------------------------------------------------------------------------


class SendOtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/otp/send (also used to resend)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone
    purpose: OtpPurpose = OtpPurpose.LOGIN


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone
    code: _Code
    purpose: OtpPurpose = OtpPurpose.LOGIN


class CheckPhoneRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone


class PhoneLoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone
    code: _Code


class PhoneRegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone
    code: _Code
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class VerifyUserPhoneRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: _Phone
    code: _Code


class WidgetLoginRequest(BaseModel):
    """Signed-widget assertion, forwarded field for field.

    extra="allow": the signature covers every field the widget sent, including
    ones this model does not name, so unknown fields must survive parsing.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    auth_date: int
    hash: str = Field(max_length=128)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Request models -- operator
# ---------------------------------------------------------------------------


class AdminSignUpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: _Password
    role: str = Field(default="admin", max_length=32)


class AdminSignInRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=72)
    new_password: _Password


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int
    refresh_expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        )


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    photo_url: Optional[str] = None
    role: str
    is_active: bool
    is_verified: bool
    providers: list[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User, providers: list[str] | None = None) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            phone_number=user.phone_number,
            first_name=user.first_name,
            last_name=user.last_name,
            photo_url=user.photo_url,
            role=user.role,
            is_active=user.is_active,
            is_verified=user.is_verified,
            providers=providers or [],
        )


class AuthResponse(TokenResponse):
    """Token pair plus the participant it was issued for."""

    user: UserResponse
    created: bool = False


class AdminResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    is_active: bool
    is_creator: bool

    @classmethod
    def from_admin(cls, admin: Admin, role: str | None = None) -> "AdminResponse":
        return cls(
            id=admin.id,
            email=admin.email,
            role=role or admin.role,
            is_active=admin.is_active,
            is_creator=admin.is_creator,
        )


class AdminAuthResponse(TokenResponse):
    admin: AdminResponse


class OtpSentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    phone_number: str
    purpose: str
    expires_in: int
    message: str = "Verification code sent."


class OtpVerifiedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    phone_number: str
    purpose: str
    verified: bool = True


class PhoneStatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    phone_number: str
    registered: bool


class ProviderInfo(BaseModel):
    """One sign-in method the client may offer."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    enabled: bool


class PermissionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    permissions: list[str]
    operations: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Envelope models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
