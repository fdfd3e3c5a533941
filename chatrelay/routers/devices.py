from fastapi import APIRouter, Depends, Response, status

from chatrelay.errors import NotFoundError
from chatrelay.repositories.device_repository import DeviceRepository
from chatrelay.schemas.device import DevicePublic, DeviceRegister
from chatrelay.utils.dependencies import get_current_user, get_device_repository


router = APIRouter(prefix="/devices", tags=["push"])


@router.post("/register", response_model=DevicePublic)
async def register_device(payload: DeviceRegister, current_user: dict = Depends(get_current_user), repo: DeviceRepository = Depends(get_device_repository)):
    doc = await repo.register(current_user["_id"], payload.platform, payload.token)
    return DevicePublic(**doc)


@router.delete("/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_device(token: str, current_user: dict = Depends(get_current_user), repo: DeviceRepository = Depends(get_device_repository)):
    if not await repo.unregister(current_user["_id"], token):
        raise NotFoundError("Device not registered")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
