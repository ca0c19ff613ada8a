from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, field_validator


class NotifyRequest(BaseModel):
    order_code: str
    event: Literal["payment_initiated", "payment_status_hint"] = "payment_status_hint"

    @field_validator("order_code")
    @classmethod
    def validate_order_code(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("order_code cannot be empty")
        return v


class RecoverRequest(BaseModel):
    limit: Optional[int] = None

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v):
        if v is not None and not 1 <= v <= 500:
            raise ValueError("limit must be between 1 and 500")
        return v


class WebhookPayload(BaseModel):
    code: str
    desc: Optional[str] = None
    success: Optional[bool] = None
    data: Dict[str, Any]
    signature: str


class SweepRequest(BaseModel):
    priority_order_codes: List[str] = []

    @field_validator("priority_order_codes")
    @classmethod
    def validate_order_codes(cls, v):
        codes = [c.strip() for c in v if c and c.strip()]
        if len(codes) > 50:
            raise ValueError("At most 50 priority order codes per sweep")
        return codes
