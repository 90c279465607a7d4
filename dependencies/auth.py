from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from uuid import UUID

from core.security import decode_access_token
from database.postgres import get_db
from schemas.enum import RoleEnum
from schemas.schemas import Patient

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")


@dataclass
class CurrentUser:
    user_id: str
    organization_id: UUID
    role: RoleEnum
    patient_id: Optional[UUID] = None


async def get_current_user(
    token: str = Depends(oauth2_scheme),
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)

        user_id: str = payload.get("sub") # type: ignore
        org_id: str | None = payload.get("org")

        if not user_id or not org_id:
            raise credentials_exception

        role = RoleEnum(payload.get("role"))
        patient_id = payload.get("patient_id")

        return CurrentUser(
            user_id=user_id,
            organization_id=UUID(org_id),
            role=role,
            patient_id=UUID(patient_id) if patient_id else None,
        )
    except (JWTError, ValueError):
        raise credentials_exception


async def get_current_patient(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Patient:
    if current_user.role != RoleEnum.PATIENT or not current_user.patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only patients can manage their appointments"
        )

    result = await db.execute(
        select(Patient).where(
            Patient.id == current_user.patient_id,
            Patient.organization_id == current_user.organization_id,
        )
    )
    patient = result.scalar_one_or_none()

    if not patient:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return patient


async def require_staff(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if current_user.role != RoleEnum.STAFF:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can manage provider schedules"
        )
    return current_user
