# slotbook/deps.py
from typing import Optional

from fastapi import Header, HTTPException, status

from .config import settings


# Authentication lives in front of this service; the gateway forwards the
# authenticated actor as a header.
def require_patient(x_patient_id: Optional[int] = Header(None)) -> int:
    if x_patient_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Patient-Id")
    return x_patient_id


def require_doctor(x_doctor_id: Optional[int] = Header(None)) -> int:
    if x_doctor_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Doctor-Id")
    return x_doctor_id


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="ADMIN_TOKEN not configured")
    if provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def require_payment_collaborator(x_payment_token: Optional[str] = Header(None)) -> None:
    expected = (settings.PAYMENT_WEBHOOK_TOKEN or "").strip()
    provided = (x_payment_token or "").strip()
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="PAYMENT_WEBHOOK_TOKEN not configured")
    if provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
