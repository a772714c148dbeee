from typing import Literal, Optional, get_args

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator, model_validator

BookingStatus = Literal["pending", "confirmed", "in_progress", "completed", "cancelled"]
RiderStatus = Literal["unassigned", "assigned", "accepted", "picked_up", "delivered", "completed"]

BOOKING_STATUSES: tuple[str, ...] = get_args(BookingStatus)


class ItemPrice(BaseModel):
    service_name: str = Field(..., min_length=1, examples=["Dry Clean"])
    quantity: int = Field(default=1, ge=1, examples=[2])
    unit_price: float = Field(..., ge=0, examples=[300])
    total_price: float = Field(..., ge=0, examples=[600])


class ItemLine(BaseModel):
    """An edited line as sent by the customer app: name, quantity, unit price."""
    name: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    price: float = Field(..., ge=0)

    def to_item_price(self) -> ItemPrice:
        return ItemPrice(
            service_name=self.name,
            quantity=self.quantity,
            unit_price=self.price,
            total_price=self.quantity * self.price,
        )


class Coordinates(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None


class AddressDetails(BaseModel):
    flatNo: Optional[str] = None
    street: Optional[str] = None
    landmark: Optional[str] = None
    village: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None
    type: Literal["home", "office", "other"] = "other"


class ChargesBreakdown(BaseModel):
    base_price: float = 0
    tax_amount: float = 0
    service_fee: float = 0
    delivery_fee: float = 0
    handling_fee: float = 0
    discount: float = 0


class BookingCreate(BaseModel):
    customer_id: str = Field(..., description="ObjectId of the customer record")
    name: str = Field(..., min_length=1, examples=["Priya Sharma"])
    phone: str = Field(..., min_length=1, examples=["9876543210"])
    service: str = Field(default="", examples=["Quick Pickup"])
    service_type: str = Field(..., examples=["laundry"])
    services: list[str] = Field(default_factory=list)
    scheduled_date: str = Field(..., examples=["2025-08-14"])
    scheduled_time: str = Field(..., examples=["10:00 AM"])
    delivery_date: str = Field(..., examples=["2025-08-16"])
    delivery_time: str = Field(..., examples=["06:00 PM"])
    provider_name: str = Field(..., examples=["Fresh Fold Dry Cleaners"])
    address: str = Field(..., min_length=1)
    address_details: Optional[AddressDetails] = None
    coordinates: Coordinates = Field(default_factory=Coordinates)
    additional_details: str = ""
    special_instructions: str = ""
    total_price: Optional[float] = Field(default=None, ge=0)
    discount_amount: float = Field(default=0, ge=0)
    final_amount: Optional[float] = Field(
        default=None,
        description="Derived as total_price - discount_amount when omitted.",
    )
    coupon_code: Optional[str] = None
    item_prices: list[ItemPrice] = Field(default_factory=list)
    charges_breakdown: Optional[ChargesBreakdown] = None
    status: BookingStatus = "pending"

    @field_validator("customer_id")
    @classmethod
    def _valid_object_id(cls, v: str) -> str:
        if not ObjectId.is_valid(v):
            raise ValueError("customer_id must be a valid ObjectId")
        return v

    @model_validator(mode="after")
    def _service_described(self) -> "BookingCreate":
        if not self.item_prices and not self.service.strip():
            raise ValueError("service is required when item_prices is empty")
        return self


def booking_to_doc(b: BookingCreate) -> dict:
    doc = b.model_dump(exclude_none=True)
    doc["customer_id"] = ObjectId(b.customer_id)
    doc["coupon_code"] = b.coupon_code.strip() if b.coupon_code else None
    doc.setdefault("final_amount", None)
    doc.setdefault("total_price", None)
    doc.update(
        {
            "rider_id": None,
            "assignedRider": None,
            "assignedRiderPhone": None,
            "riderStatus": "unassigned",
            "payment_status": "pending",
        }
    )
    return doc


def doc_to_booking(doc: dict) -> dict:
    doc["_id"] = str(doc["_id"])
    for key in ("customer_id", "rider_id", "assignedRider"):
        if doc.get(key) is not None:
            doc[key] = str(doc[key])
    return doc
