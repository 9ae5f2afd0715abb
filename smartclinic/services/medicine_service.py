from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from datetime import date
from typing import List, Optional, Tuple
import logging
import re

from ..core.clock import local_today
from ..core.config import settings
from ..core.security import UserRole
from ..models.medicine import Medicine, Prescription, PrescriptionStatus, Frequency
from ..models.user import User
from ..schemas.medicine import (
    MedicineCreate, MedicineUpdate, PrescriptionCreate, CustomMedicineCreate, CustomMedicineUpdate
)
from .reminder_service import ReminderService

logger = logging.getLogger(__name__)

CUSTOM_MANUFACTURER = "Patient Added"

# Checked in order; the first matching pattern wins
FREQUENCY_PATTERNS = [
    (re.compile(r"\b(as needed|needed|prn|sos)\b"), Frequency.AS_NEEDED),
    (re.compile(r"\bweek(ly)?\b"), Frequency.WEEKLY),
    (re.compile(r"\bmonth(ly)?\b"), Frequency.MONTHLY),
    (re.compile(r"\b(four|4|qid)\b"), Frequency.FOUR_TIMES_DAILY),
    (re.compile(r"\b(three|thrice|3|tid|tds)\b"), Frequency.THREE_TIMES_DAILY),
    (re.compile(r"\b(twice|two|2|bid|bd)\b"), Frequency.TWICE_DAILY),
    (re.compile(r"\b(once|one|1|daily|od)\b"), Frequency.ONCE_DAILY),
]

def normalize_frequency(text: str) -> Frequency:
    """Map free-text dosing frequency ("twice a day", "TID", "prn") to a Frequency."""
    value = text.strip().lower().replace("_", " ")
    for member in Frequency:
        if value == member.value.replace("_", " "):
            return member
    for pattern, frequency in FREQUENCY_PATTERNS:
        if pattern.search(value):
            return frequency
    return Frequency.ONCE_DAILY

def parse_medicine_line(line: str) -> Tuple[str, str, Frequency, Optional[str]]:
    """Parse ``Name - Dosage - Frequency - Instructions``."""
    parts = [part.strip() for part in re.split(r"\s+-\s+", line.strip())]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError("expected 'Name - Dosage - Frequency - Instructions'")
    name, dosage = parts[0], parts[1]
    frequency = normalize_frequency(parts[2]) if len(parts) > 2 and parts[2] else Frequency.ONCE_DAILY
    instructions = " - ".join(parts[3:]) or None
    return name, dosage, frequency, instructions

class MedicineService:
    def __init__(self, db: Session):
        self.db = db

    # Clinic inventory

    def list_medicines(self, clinic_id: int, search: Optional[str] = None) -> List[Medicine]:
        query = self.db.query(Medicine).filter(
            Medicine.clinic_id == clinic_id,
            Medicine.is_custom == False
        )
        if search:
            query = query.filter(Medicine.name.ilike(f"%{search}%"))
        return query.order_by(Medicine.name).all()

    def get_medicine(self, medicine_id: int, clinic_id: int) -> Medicine:
        medicine = self.db.query(Medicine).filter(
            Medicine.id == medicine_id,
            Medicine.clinic_id == clinic_id,
            Medicine.is_custom == False
        ).first()
        if not medicine:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Medicine not found"
            )
        return medicine

    def create_medicine(self, clinic_id: int, data: MedicineCreate) -> Medicine:
        medicine = Medicine(clinic_id=clinic_id, is_custom=False, **data.model_dump())
        self.db.add(medicine)
        self.db.commit()
        self.db.refresh(medicine)
        return medicine

    def update_medicine(self, medicine_id: int, clinic_id: int, data: MedicineUpdate) -> Medicine:
        medicine = self.get_medicine(medicine_id, clinic_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(medicine, field, value)
        self.db.commit()
        self.db.refresh(medicine)
        return medicine

    def restock(self, medicine_id: int, clinic_id: int, amount: int) -> Medicine:
        medicine = self.get_medicine(medicine_id, clinic_id)
        medicine.stock = (medicine.stock or 0) + amount
        self.db.commit()
        self.db.refresh(medicine)
        logger.info(f"Medicine {medicine.id} restocked by {amount} (now {medicine.stock})")
        return medicine

    def low_stock(self, clinic_id: int, threshold: Optional[int] = None) -> List[Medicine]:
        threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
        return self.db.query(Medicine).filter(
            Medicine.clinic_id == clinic_id,
            Medicine.is_custom == False,
            Medicine.stock <= threshold
        ).order_by(Medicine.stock, Medicine.name).all()

    # Prescriptions

    def prescribe(self, doctor: User, data: PrescriptionCreate) -> Prescription:
        patient = self.db.query(User).filter(
            User.id == data.patient_id,
            User.role == UserRole.PATIENT
        ).first()
        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Patient not found"
            )
        medicine = self.get_medicine(data.medicine_id, doctor.clinic_id)

        prescription = Prescription(
            patient_id=patient.id,
            doctor_id=doctor.id,
            medicine_id=medicine.id,
            appointment_id=data.appointment_id,
            dosage=data.dosage,
            frequency=data.frequency,
            instructions=data.instructions,
            timings=data.timings,
            start_date=data.start_date or local_today(),
            end_date=data.end_date,
            total_doses=data.total_doses,
            completed_doses=0,
            status=PrescriptionStatus.ACTIVE,
        )
        self.db.add(prescription)
        self.db.flush()

        created = ReminderService(self.db).generate_reminders(prescription)
        if prescription.total_doses is None and prescription.end_date is not None and created:
            prescription.total_doses = created

        self.db.commit()
        self.db.refresh(prescription)
        return prescription

    def get_prescription(self, prescription_id: int) -> Prescription:
        prescription = self.db.query(Prescription).filter(
            Prescription.id == prescription_id
        ).first()
        if not prescription:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Prescription not found"
            )
        return prescription

    def list_for_patient(self, patient_id: int, active_only: bool = False) -> List[Prescription]:
        query = self.db.query(Prescription).filter(Prescription.patient_id == patient_id)
        if active_only:
            query = query.filter(Prescription.status == PrescriptionStatus.ACTIVE)
        return query.order_by(Prescription.created_at.desc(), Prescription.id.desc()).all()

    def update_prescription_status(self, prescription_id: int, new_status: PrescriptionStatus) -> Prescription:
        prescription = self.get_prescription(prescription_id)
        prescription.status = new_status
        ReminderService(self.db).regenerate_future_reminders(prescription)
        self.db.commit()
        self.db.refresh(prescription)
        return prescription

    # Patient-managed medicines

    def list_custom(self, patient: User) -> List[Prescription]:
        return self.db.query(Prescription).join(Medicine).filter(
            Prescription.patient_id == patient.id,
            Prescription.doctor_id.is_(None),
            Medicine.is_custom == True
        ).order_by(Prescription.id).all()

    def get_custom(self, prescription_id: int, patient: User) -> Prescription:
        prescription = self.db.query(Prescription).join(Medicine).filter(
            Prescription.id == prescription_id,
            Prescription.patient_id == patient.id,
            Medicine.is_custom == True
        ).first()
        if not prescription:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Custom medicine not found"
            )
        return prescription

    def add_custom(self, patient: User, data: CustomMedicineCreate, commit: bool = True) -> Prescription:
        medicine = Medicine(
            clinic_id=patient.clinic_id,
            name=data.name,
            manufacturer=CUSTOM_MANUFACTURER,
            stock=0,
            is_custom=True,
        )
        self.db.add(medicine)
        self.db.flush()

        prescription = Prescription(
            patient_id=patient.id,
            doctor_id=None,
            medicine_id=medicine.id,
            dosage=data.dosage,
            frequency=data.frequency,
            instructions=data.instructions,
            timings=data.timings,
            start_date=data.start_date or local_today(),
            end_date=data.end_date,
            completed_doses=0,
            status=PrescriptionStatus.ACTIVE,
        )
        self.db.add(prescription)
        self.db.flush()
        ReminderService(self.db).generate_reminders(prescription)

        if commit:
            self.db.commit()
            self.db.refresh(prescription)
        return prescription

    def update_custom(self, prescription_id: int, patient: User, data: CustomMedicineUpdate) -> Prescription:
        prescription = self.get_custom(prescription_id, patient)
        values = data.model_dump(exclude_unset=True)

        if "name" in values:
            prescription.medicine.name = values.pop("name")

        schedule_fields = {"frequency", "timings", "end_date", "status"}
        schedule_changed = bool(schedule_fields & set(values))
        for field, value in values.items():
            setattr(prescription, field, value)

        if schedule_changed:
            self.db.flush()
            ReminderService(self.db).regenerate_future_reminders(prescription)

        self.db.commit()
        self.db.refresh(prescription)
        return prescription

    def delete_custom(self, prescription_id: int, patient: User) -> None:
        prescription = self.get_custom(prescription_id, patient)
        medicine = prescription.medicine
        self.db.delete(prescription)
        self.db.flush()
        if medicine is not None and medicine.is_custom:
            self.db.delete(medicine)
        self.db.commit()

    def upload_custom(self, patient: User, text: str, start_date: Optional[date] = None) -> Tuple[List[Prescription], List[str]]:
        """Bulk-add medicines, one ``Name - Dosage - Frequency - Instructions`` per line."""
        created, errors = [], []
        for number, line in enumerate(text.splitlines(), start=1):
            if not line.strip() or line.strip().startswith("#"):
                continue
            try:
                name, dosage, frequency, instructions = parse_medicine_line(line)
            except ValueError as e:
                errors.append(f"Line {number}: {e}")
                continue
            data = CustomMedicineCreate(
                name=name,
                dosage=dosage,
                frequency=frequency,
                instructions=instructions,
                start_date=start_date,
            )
            created.append(self.add_custom(patient, data, commit=False))

        self.db.commit()
        for prescription in created:
            self.db.refresh(prescription)
        return created, errors
