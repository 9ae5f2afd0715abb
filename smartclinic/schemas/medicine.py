from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List
from datetime import date, datetime
import re

from ..models.medicine import Frequency, PrescriptionStatus

TIMING_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")

class MedicineCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    dosage_form: Optional[str] = None
    strength: Optional[str] = None
    manufacturer: Optional[str] = None
    stock: int = Field(0, ge=0)

class MedicineUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    dosage_form: Optional[str] = None
    strength: Optional[str] = None
    manufacturer: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)

class Restock(BaseModel):
    amount: int = Field(..., gt=0)

class MedicineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    dosage_form: Optional[str] = None
    strength: Optional[str] = None
    manufacturer: Optional[str] = None
    stock: int
    is_custom: bool
    created_at: Optional[datetime] = None

def _check_timings(timings):
    if timings is None:
        return timings
    for value in timings:
        if not TIMING_PATTERN.match(value):
            raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return sorted(set(timings))

class PrescriptionCreate(BaseModel):
    patient_id: int
    medicine_id: int
    appointment_id: Optional[int] = None
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: Frequency
    instructions: Optional[str] = None
    timings: Optional[List[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_doses: Optional[int] = Field(None, gt=0)

    @field_validator("timings")
    @classmethod
    def check_timings(cls, value):
        return _check_timings(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

class CustomMedicineCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: Frequency
    instructions: Optional[str] = None
    timings: Optional[List[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("timings")
    @classmethod
    def check_timings(cls, value):
        return _check_timings(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

class CustomMedicineUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    dosage: Optional[str] = Field(None, min_length=1, max_length=100)
    frequency: Optional[Frequency] = None
    instructions: Optional[str] = None
    timings: Optional[List[str]] = None
    end_date: Optional[date] = None
    status: Optional[PrescriptionStatus] = None

    @field_validator("timings")
    @classmethod
    def check_timings(cls, value):
        return _check_timings(value)

class MedicineUpload(BaseModel):
    text: str = Field(..., min_length=1)
    start_date: Optional[date] = None

class PrescriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: Optional[int] = None
    medicine_id: int
    medicine_name: Optional[str] = None
    appointment_id: Optional[int] = None
    dosage: str
    frequency: Frequency
    instructions: Optional[str] = None
    timings: Optional[List[str]] = None
    start_date: date
    end_date: Optional[date] = None
    total_doses: Optional[int] = None
    completed_doses: int = 0
    status: PrescriptionStatus
    created_at: Optional[datetime] = None

class UploadResult(BaseModel):
    created: List[PrescriptionResponse]
    errors: List[str]

class PrescriptionStatusUpdate(BaseModel):
    status: PrescriptionStatus
