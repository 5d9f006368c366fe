from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SendCallRequest(BaseModel):
    phone: str


class SendCallResponse(BaseModel):
    check_id: str
    call_phone: str | None
    call_phone_pretty: str | None
    expires_at: datetime
    poll_interval: float


class CallStatusResponse(BaseModel):
    check_id: str
    status: str


class CallWebhookRequest(BaseModel):
    check_id: str
    check_status: int | str


class SessionResponse(BaseModel):
    authenticated: bool
    phone: str | None = None


class BonusHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: int
    reason: str
    kind: str
    order_id: int | None = None
    created_at: datetime


class BonusAccountResponse(BaseModel):
    phone: str
    bonus_balance: int
    level: str
    total_spent: int
    history: list[BonusHistoryItem]


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class OrderCreateRequest(BaseModel):
    contact_name: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    recipient_phone: str
    address: str = Field(min_length=1)
    items: list[OrderItemRequest] = Field(min_length=1)
    delivery_method: str | None = None
    delivery_date: date | None = None
    delivery_time: str | None = None
    payment_method: str | None = None
    delivery_instructions: str | None = None
    postcard_text: str | None = None
    anonymous: bool = False
    whatsapp: bool = False
    upsell_details: list[dict[str, Any]] | None = None
    bonuses_used: int = Field(default=0, ge=0)
    promo_code: str | None = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    title: str
    quantity: int
    price: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone: str
    status: str
    total: int
    bonuses_used: int
    bonus: int
    promo_discount: int
    delivery_date: date | None = None
    delivery_time: str | None = None
    created_at: datetime
    items: list[OrderItemResponse]


class CheckoutResponse(BaseModel):
    order: OrderResponse
    bonus_added: int


class OrderStatusRequest(BaseModel):
    status: str


class PromoCheckRequest(BaseModel):
    code: str


class PromoCheckResponse(BaseModel):
    code: str
    discount: int


class PromoCodeCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    discount: int = Field(gt=0, le=100)
    expires_at: datetime | None = None
    max_uses: int | None = Field(default=None, ge=1)


class PromoCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    discount: int
    is_active: bool
    expires_at: datetime | None = None
    max_uses: int | None = None
    used_count: int


class SubcategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    sort_order: int
    subcategories: list[SubcategoryResponse]


class CategoryCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    sort_order: int = 0


class SubcategoryCreateRequest(BaseModel):
    category_id: int
    name: str = Field(min_length=1)
    slug: str = Field(min_length=1)


class AdminLoginRequest(BaseModel):
    password: str


class BonusAdjustRequest(BaseModel):
    phone: str
    delta: int
    reason: str


class BonusAdjustResponse(BaseModel):
    phone: str
    bonus_balance: int


class BonusLevelRequest(BaseModel):
    phone: str
    level: str


class ResetAttemptsRequest(BaseModel):
    phone: str
