from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from services.api.app.services.gateway_base import ClientInfo


class ClientIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    last_name: str = Field(..., alias="lastName")
    address: str = ""
    phone: str = ""
    email: str
    country_iso: str | None = Field(default=None, alias="countryIso")
    country_id: int = Field(default=1, alias="countryId")

    def to_client_info(self) -> ClientInfo:
        return ClientInfo(
            name=self.name,
            last_name=self.last_name,
            address=self.address,
            phone=self.phone,
            email=self.email,
            country_iso=self.country_iso,
            country_id=self.country_id,
        )


class CreatePaymentLinkRequest(BaseModel):
    """Field-level presence is checked by the router so omissions answer 400, not 422."""

    model_config = ConfigDict(populate_by_name=True)

    reference: str | None = None
    concept: str | None = None
    amount: int | None = None  # minor units
    currency: str | None = None
    description: str = ""
    url_success: str | None = Field(default=None, alias="urlSuccess")
    url_failed: str | None = Field(default=None, alias="urlFailed")
    url_notification: str | None = Field(default=None, alias="urlNotification")
    client: ClientIn | None = None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str
    url_success: str | None = Field(default=None, alias="urlSuccess")
    url_failed: str | None = Field(default=None, alias="urlFailed")
    currency: str = "EUR"
    client: ClientIn | None = None


class CheckoutResponse(BaseModel):
    payment_order_id: str
    order_id: str
    status: str
    short_url: str
    payment_link: dict[str, Any]


class ProcessCardRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str
    card_number: str = Field(..., alias="cardNumber")
    expiry_date: str | None = Field(default=None, alias="expiryDate")
    cvv: str | None = None


class ProcessCardResponse(BaseModel):
    success: bool
    payment_order_id: str
    transaction_id: str | None
    amount: str
    status: str
