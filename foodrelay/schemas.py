from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from datetime import datetime


class CamelModel(BaseModel):
    # wire format is camelCase, python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# --------------------------
# Shared Submodels
# --------------------------
class LatLng(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

# --------------------------
# Accounts
# --------------------------
DonorType = Literal["restaurant", "caterer", "others"]

class AccountRegister(CamelModel):
    username: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    name: str = Field(min_length=1)
    contact_info: str = Field(min_length=1)
    address: Optional[str] = None
    location: Optional[LatLng] = None
    avatar_ref: Optional[str] = None

class DonorRegister(AccountRegister):
    type: DonorType = "others"
    license: Optional[dict] = None

class NgoRegister(AccountRegister):
    ngo_license: str = Field(min_length=1)

class LoginIn(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str

class RefreshIn(CamelModel):
    refresh_token: str

class UpdateDetailsIn(CamelModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    contact_info: Optional[str] = None
    address: Optional[str] = None
    location: Optional[LatLng] = None

class ChangePasswordIn(CamelModel):
    old_password: str
    new_password: str = Field(min_length=1)

class OtpRequestIn(CamelModel):
    email: EmailStr

class ResetPasswordIn(CamelModel):
    email: EmailStr
    otp: str
    new_password: str = Field(min_length=1)

class AccountOut(CamelModel):
    id: str
    role: Literal["donor", "ngo"]
    username: str
    email: str
    name: Optional[str] = None
    contact_info: Optional[str] = None
    address: Optional[str] = None
    location: Optional[LatLng] = None
    avatar_ref: Optional[str] = None
    type: Optional[DonorType] = None
    license: Optional[dict] = None
    ngo_license: Optional[str] = None
    created_at: Optional[datetime] = None

class TokenOut(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    account: Optional[AccountOut] = None

class MessageOut(CamelModel):
    message: str

# --------------------------
# Food items
# --------------------------
class FoodItemIn(CamelModel):
    description: str = Field(min_length=1)
    quantity: str = Field(min_length=1)
    cover_image_ref: str = Field(min_length=1)
    expiry_date: Optional[datetime] = None
    address: Optional[str] = None
    location: Optional[LatLng] = None

class FoodItemOut(CamelModel):
    id: str
    donor_id: str
    description: str
    quantity: str
    cover_image_ref: str
    expiry_date: Optional[datetime] = None
    address: Optional[str] = None
    location: Optional[LatLng] = None
    status: Literal["available", "claimed", "reserved", "delivered"]
    claimed_by: Optional[str] = None
    created_at: Optional[datetime] = None

class FoodItemCreated(CamelModel):
    food_item: FoodItemOut
    search_started: bool

class InterestOut(CamelModel):
    food_item: FoodItemOut
    search_cancelled: bool

# --------------------------
# Deliveries
# --------------------------
DeliveryStatus = Literal["Pending", "Started", "Completed", "Failed"]

class StartDeliveryIn(CamelModel):
    # presence is checked by the tracker so blanks surface as one error
    ngo_id: Optional[str] = None
    donor_id: Optional[str] = None
    food_item_id: Optional[str] = None

class DeliveryOut(CamelModel):
    id: str
    ngo_id: str
    donor_id: str
    food_item_id: str
    status: DeliveryStatus
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None

class StartDeliveryOut(CamelModel):
    message: str = "Delivery process started"
    delivery: DeliveryOut
    donor_location: Optional[LatLng] = None
    ngo_location: Optional[LatLng] = None
    donor_username: Optional[str] = None
    ngo_username: Optional[str] = None
    pickup_code_sent: bool

class HistoryIn(CamelModel):
    ngo_id: Optional[str] = None

class DeliveryView(CamelModel):
    id: str
    status: DeliveryStatus
    food_item_id: str
    food_description: Optional[str] = None
    donor_username: Optional[str] = None
    donor_name: Optional[str] = None
    donor_location: Optional[LatLng] = None
    ngo_name: Optional[str] = None
    ngo_location: Optional[LatLng] = None
    delivery_date: datetime

class HistoryOut(CamelModel):
    status_code: int = 200
    data: List[DeliveryView]
    message: str = "Delivery history sent successfully"
    success: bool = True

class TransitionIn(CamelModel):
    to_status: str
    version: int
    note: Optional[str] = None

class ConfirmPickupIn(CamelModel):
    code: str

# --------------------------
# Maps
# --------------------------
class GeocodeOut(CamelModel):
    lat: float
    lng: float

class TravelInfoIn(CamelModel):
    origin: str
    destination: str

class TravelInfoOut(CamelModel):
    distance_km: float
    duration_min: float
    source: str
