from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime

from ..models.appointment import AppointmentStatus, AppointmentType

class AppointmentCreate(BaseModel):
    doctor_id: int
    appointment_date: datetime
    patient_id: Optional[int] = None  # Staff booking on behalf of a patient
    duration: int = Field(30, gt=0, le=480)
    type: AppointmentType = AppointmentType.CLINIC
    location: Optional[str] = None
    notes: Optional[str] = None
    symptoms: Optional[str] = None

class AppointmentRequest(BaseModel):
    """Public booking form; the patient may not have an account yet."""
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., pattern=r"^\+?[0-9]{7,15}$")
    email: Optional[EmailStr] = None
    doctor_id: int
    appointment_date: datetime
    type: AppointmentType = AppointmentType.CLINIC
    symptoms: Optional[str] = None
    notes: Optional[str] = None

class PatientAppointmentRequest(BaseModel):
    doctor_id: int
    appointment_date: datetime
    type: AppointmentType = AppointmentType.CLINIC
    symptoms: Optional[str] = None
    notes: Optional[str] = None

class AppointmentUpdate(BaseModel):
    appointment_date: Optional[datetime] = None
    duration: Optional[int] = Field(None, gt=0, le=480)
    type: Optional[AppointmentType] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None

class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus

class AppointmentApproval(BaseModel):
    confirmed_date: Optional[datetime] = None

class AppointmentRejection(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)

class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: Optional[int] = None
    patient_id: int
    doctor_id: int
    appointment_date: datetime
    duration: int
    type: AppointmentType
    status: AppointmentStatus
    location: Optional[str] = None
    notes: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    cancellation_reason: Optional[str] = None
    is_delayed: bool = False
    delay_minutes: Optional[int] = 0
    delay_reason: Optional[str] = None
    created_at: Optional[datetime] = None
