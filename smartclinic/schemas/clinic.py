from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, Dict
from datetime import datetime

class ClinicBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    address: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    checkin_radius_meters: Optional[int] = Field(None, gt=0)

class ClinicCreate(ClinicBase):
    pass

class ClinicUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    address: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[EmailStr] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    checkin_radius_meters: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None

class ClinicAdmin(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., pattern=r"^\+?[0-9]{7,15}$")
    email: EmailStr

class ClinicRegistration(BaseModel):
    clinic: ClinicCreate
    admin: ClinicAdmin

class ClinicResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    address: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    checkin_radius_meters: Optional[int] = None
    is_active: bool
    is_approved: bool
    created_at: Optional[datetime] = None

class ClinicStats(BaseModel):
    clinic_id: int
    users_by_role: Dict[str, int]
    appointments: int
    medicines: int
