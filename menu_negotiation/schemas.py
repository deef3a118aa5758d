from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from menu_negotiation.durations import (
    days_to_duration_parts,
    duration_parts_to_days,
    normalize_duration_parts,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class RequestStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    QUOTE_SENT = "QUOTE_SENT"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    APPROVED = "APPROVED"


class QuoteStatus(str, Enum):
    SENT = "SENT"
    REJECTED = "REJECTED"
    APPROVED = "APPROVED"


class EventType(str, Enum):
    REQUEST_SUBMITTED = "REQUEST_SUBMITTED"
    OWNER_OPENED = "OWNER_OPENED"
    QUOTE_SENT = "QUOTE_SENT"
    QUOTE_OPENED = "QUOTE_OPENED"
    QUOTE_REJECTED = "QUOTE_REJECTED"
    QUOTE_APPROVED = "QUOTE_APPROVED"
    LINK_REGENERATED = "LINK_REGENERATED"


class Audience(str, Enum):
    CLIENT = "client"
    OWNER = "owner"


class MenuFlow(str, Enum):
    DEFAULT = "default"
    PROMOTIONS = "promotions"
    AGENCY = "agency"

    @classmethod
    def parse(cls, raw: Any) -> "MenuFlow":
        value = str(raw or "").strip().lower()
        for flow in cls:
            if flow.value == value:
                return flow
        return cls.DEFAULT


class DiscountScope(str, Enum):
    GENERAL = "GENERAL"
    FACE = "FACE"
    POINT = "POINT"


class GiftScope(str, Enum):
    FACE = "FACE"
    POINT = "POINT"


class AppliesTo(str, Enum):
    ALL = "ALL"
    BASE = "BASE"
    SERVICES = "SERVICES"


class DurationParts(CamelModel):
    years: int = 0
    months: int = 0
    days: int = 0

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        return normalize_duration_parts(data)

    @property
    def total_days(self) -> int:
        return duration_parts_to_days(self.model_dump())


class Promotion(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    show_in_media_kit: Optional[bool] = None


class ItemSnapshot(CamelModel):
    """Catalog data frozen when the item entered the cart."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    point_name: str = "Ponto"
    point_type: Optional[str] = None
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    image_url: Optional[str] = None
    unit_label: Optional[str] = None
    unit_type: Optional[str] = None
    price_month: Optional[float] = None
    price_week: Optional[float] = None
    point_base_price_month: Optional[float] = None
    point_base_price_week: Optional[float] = None
    unit_price_month: Optional[float] = None
    unit_price_week: Optional[float] = None
    base_price_month: Optional[float] = None
    base_price_week: Optional[float] = None
    production_costs: Optional[dict] = None
    effective_promotion: Optional[Promotion] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("pointName") and data.get("mediaPointName"):
            data["pointName"] = data["mediaPointName"]
        if not data.get("unitLabel") and data.get("mediaUnitLabel"):
            data["unitLabel"] = data["mediaUnitLabel"]
        if not data.get("effectivePromotion") and data.get("promotion"):
            data["effectivePromotion"] = data["promotion"]
        return data


class CartItem(CamelModel):
    id: str
    point_id: str
    unit_id: Optional[str] = None
    duration: DurationParts = Field(default_factory=lambda: DurationParts(**days_to_duration_parts(None)))
    duration_days: Optional[int] = None
    added_at: Optional[str] = None
    snapshot: ItemSnapshot = Field(default_factory=ItemSnapshot)

    @model_validator(mode="before")
    @classmethod
    def _fill_duration(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("duration"):
            data["duration"] = days_to_duration_parts(data.get("durationDays", data.get("duration_days")))
        unit_id = data.pop("unit_id", data.get("unitId"))
        data["unitId"] = str(unit_id).strip() or None if unit_id is not None else None
        return data

    @model_validator(mode="after")
    def _sync_days(self) -> "CartItem":
        self.duration_days = self.duration.total_days
        return self

    @field_validator("id", "point_id", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        value = str(value or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    def selection_key(self) -> tuple[str, str]:
        return self.point_id, self.unit_id or ""


class ServiceLine(CamelModel):
    name: str
    value: float = 0
    discount_percent: Optional[float] = None
    discount_fixed: Optional[float] = None


class AppliedDiscount(CamelModel):
    id: str
    scope: DiscountScope = DiscountScope.GENERAL
    target_id: Optional[str] = None
    percent: Optional[float] = None
    fixed: Optional[float] = None
    applies_to: AppliesTo = AppliesTo.ALL
    label: str = ""


class GiftDuration(CamelModel):
    years: int = 0
    months: int = 0
    days: int = 0
    total_days: int = 0

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        parts = normalize_duration_parts(data)
        parts["totalDays"] = duration_parts_to_days(parts)
        return parts


class Gift(CamelModel):
    id: str
    scope: GiftScope
    target_id: str
    duration: GiftDuration = Field(default_factory=GiftDuration)
    label: str = ""


class QuoteDraft(CamelModel):
    message: Optional[str] = None
    services: list[ServiceLine] = Field(default_factory=list)
    costs: list[ServiceLine] = Field(default_factory=list)
    manual_service_value: Optional[float] = None
    gifts: list[Gift] = Field(default_factory=list)
    discounts: list[AppliedDiscount] = Field(default_factory=list)


class MenuRequestCreate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "companyId": 1,
                "customerName": "Maria Souza",
                "customerEmail": "maria@example.com",
                "customerPhone": "(11) 98888-7777",
                "items": [
                    {
                        "id": "mc_1",
                        "pointId": "pt_1",
                        "unitId": "un_1",
                        "duration": {"years": 0, "months": 1, "days": 0},
                        "snapshot": {"pointName": "Av. Paulista 1000", "priceMonth": 8500},
                    }
                ],
            }
        },
    )

    company_id: int
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    customer_company_name: Optional[str] = None
    customer_cnpj: Optional[str] = None
    notes: Optional[str] = None
    uf: Optional[str] = Field(default=None, max_length=2)
    city: Optional[str] = None
    flow: MenuFlow = MenuFlow.DEFAULT
    items: list[CartItem] = Field(default_factory=list)

    @field_validator("customer_name", "customer_email", "customer_phone", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("customer_company_name", "customer_cnpj", "notes", "city", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        value = str(value or "").strip()
        return value or None

    @field_validator("uf", mode="before")
    @classmethod
    def _upper_uf(cls, value: Any) -> Optional[str]:
        value = str(value or "").strip().upper()
        return value or None

    @field_validator("flow", mode="before")
    @classmethod
    def _parse_flow(cls, value: Any) -> MenuFlow:
        return MenuFlow.parse(value)


class TokenBody(CamelModel):
    token: Optional[str] = None
    t: Optional[str] = None


class SendQuoteIn(TokenBody):
    draft: QuoteDraft = Field(default_factory=QuoteDraft)


class RejectQuoteIn(TokenBody):
    reason: Optional[str] = None


class ApproveQuoteIn(TokenBody):
    pass


class RegenerateLinkIn(TokenBody):
    aud: Audience


class PreviewIn(TokenBody):
    draft: QuoteDraft = Field(default_factory=QuoteDraft)
