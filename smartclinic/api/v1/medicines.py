from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import get_clinic_member
from ...models.user import User
from ...services.medicine_service import MedicineService
from ...schemas.medicine import MedicineCreate, MedicineUpdate, MedicineResponse, Restock

router = APIRouter(prefix="/medicines", tags=["Medicines"])

@router.get("", response_model=List[MedicineResponse])
async def list_medicines(
    search: Optional[str] = Query(None, description="Match on name"),
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """The clinic's formulary; medicines patients added themselves are not listed."""
    medicines = MedicineService(db).list_medicines(current_user.clinic_id, search)
    return [MedicineResponse.model_validate(m) for m in medicines]

@router.get("/low-stock", response_model=List[MedicineResponse])
async def low_stock(
    threshold: Optional[int] = Query(None, ge=0),
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    medicines = MedicineService(db).low_stock(current_user.clinic_id, threshold)
    return [MedicineResponse.model_validate(m) for m in medicines]

@router.post("", response_model=MedicineResponse, status_code=201)
async def create_medicine(
    data: MedicineCreate,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    medicine = MedicineService(db).create_medicine(current_user.clinic_id, data)
    return MedicineResponse.model_validate(medicine)

@router.get("/{medicine_id}", response_model=MedicineResponse)
async def get_medicine(
    medicine_id: int,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    medicine = MedicineService(db).get_medicine(medicine_id, current_user.clinic_id)
    return MedicineResponse.model_validate(medicine)

@router.put("/{medicine_id}", response_model=MedicineResponse)
async def update_medicine(
    medicine_id: int,
    data: MedicineUpdate,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    medicine = MedicineService(db).update_medicine(medicine_id, current_user.clinic_id, data)
    return MedicineResponse.model_validate(medicine)

@router.post("/{medicine_id}/restock", response_model=MedicineResponse)
async def restock_medicine(
    medicine_id: int,
    data: Restock,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    medicine = MedicineService(db).restock(medicine_id, current_user.clinic_id, data.amount)
    return MedicineResponse.model_validate(medicine)
