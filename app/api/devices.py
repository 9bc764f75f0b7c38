from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import SessionAuthContext, require_session
from app.db.session import get_db
from app.schemas.auth import TrustedDeviceItem, TrustedDeviceListResponse
from app.services.credential_store import CredentialStore

router = APIRouter(prefix="/devices", tags=["devices"])


@router.get("", response_model=TrustedDeviceListResponse)
def list_trusted_devices(
    auth: SessionAuthContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> TrustedDeviceListResponse:
    store = CredentialStore(db)
    items = []
    for device in store.list_trusted_devices(auth.user.user_id):
        item = TrustedDeviceItem.model_validate(device)
        item.current = device.device_id == auth.device_id
        items.append(item)
    return TrustedDeviceListResponse(items=items)


@router.delete("/{target_device_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_trusted_device(
    target_device_id: str,
    auth: SessionAuthContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> None:
    if target_device_id == auth.device_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="cannot_revoke_current_device")
    store = CredentialStore(db)
    if not store.revoke_device(auth.user.user_id, target_device_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="device_not_found")
    db.commit()
