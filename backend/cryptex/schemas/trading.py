"""Trading request schemas.

Numeric fields are left loosely typed so the order service can answer bad
input with its own messages instead of a generic 422.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class OrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: Optional[str] = None
    side: Optional[str] = Field(None, validation_alias=AliasChoices("side", "sideValue", "sideType"))
    order_type: Optional[str] = Field(None, validation_alias=AliasChoices("order_type", "orderType"))
    quantity: Optional[Any] = Field(None, validation_alias=AliasChoices("quantity", "q"))
    limit_price: Optional[Any] = Field(None, validation_alias=AliasChoices("limitPrice", "limit_price"))
    sl: Optional[Any] = Field(None, validation_alias=AliasChoices("sl", "stopLoss", "stop_loss"))
    tp: Optional[Any] = Field(None, validation_alias=AliasChoices("tp", "takeProfit", "take_profit"))


class ClosePositionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[Any] = None
    symbol: Optional[str] = None
    quantity: Optional[Any] = None
    close_type: Optional[str] = Field(None, validation_alias=AliasChoices("order_type", "type"))


class UpdateStopsRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Any] = None
    sl: Optional[Any] = None
    tp: Optional[Any] = None
