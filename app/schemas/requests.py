from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class InitiatePaymentRequest(BaseModel):
    """
    Presence of the required fields is checked by the initiation service so
    that a missing field answers 400 with the standard error envelope.
    """

    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[float] = None
    plan: Optional[str] = None
    duration: Optional[Union[int, str]] = None
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    customer_phone: Optional[Union[str, int]] = Field(default=None, alias="customerPhone")
    currency: Optional[str] = None
    return_url: Optional[str] = Field(default=None, alias="returnUrl")


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(default=None, alias="orderId")
