"""
Pydantic schemas for the ServiciosHogar API.

The frontend speaks camelCase; models accept both spellings and always
serialize camelCase.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# AUTH
# =============================================================================

class RegisterRequest(ApiModel):
    name: str = ""
    email: str = ""
    password: str = ""
    role: Literal["customer"] = "customer"


class RegisterProviderRequest(ApiModel):
    name: str = ""
    email: str = ""
    password: str = ""
    business_name: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(ApiModel):
    email: str = ""
    password: str = ""


class UserOut(ApiModel):
    id: int
    name: str
    email: str
    role: str
    created_at: Optional[datetime] = None


class AuthResponse(ApiModel):
    message: str
    user: UserOut
    token: str


class TokenResponse(ApiModel):
    token: str


# =============================================================================
# CHAT
# =============================================================================

class ConversationOut(ApiModel):
    id: int
    customer_id: int
    provider_id: int
    service_request_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    customer_unread_count: int = 0
    provider_unread_count: int = 0
    created_at: Optional[datetime] = None


class StartConversationRequest(ApiModel):
    customer_id: Optional[int] = None
    service_request_id: Optional[int] = None


class MessageOut(ApiModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: str = "text"
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SendMessagePayload(ApiModel):
    """Socket `send_message` body."""
    conversation_id: int
    content: str = Field(max_length=1024)
    message_type: str = Field(default="text", max_length=20)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("El mensaje no puede estar vacío")
        return v


class MarkReadPayload(ApiModel):
    """Socket `mark_as_read` body."""
    conversation_id: int
    message_ids: List[int] = Field(default_factory=list)


# =============================================================================
# CREDITS & PAYMENTS
# =============================================================================

class BalanceOut(ApiModel):
    current_credits: int
    total_purchased: int
    total_used: int
    last_purchase: Optional[datetime] = None


class CreditPackageOut(ApiModel):
    id: str
    name: str
    credits: int
    price: int
    price_per_credit: int
    popular: bool = False
    savings: Optional[str] = None


class CreditTransactionOut(ApiModel):
    id: int
    kind: str
    amount: int
    balance_after: int
    purchase_id: Optional[int] = None
    external_payment_id: Optional[str] = None
    created_at: Optional[datetime] = None


class CreatePreferenceRequest(ApiModel):
    package_id: str


class PreferenceOut(ApiModel):
    init_point: str = Field(alias="init_point")
    purchase_id: int


class WebhookValidationResult(BaseModel):
    """Outcome of an x-signature check. Never raised, always returned."""
    is_valid: bool
    error: Optional[str] = None
