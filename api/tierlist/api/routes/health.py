from fastapi import APIRouter, Depends

from tierlist.core.config import Settings, get_settings
from tierlist.services.storage import AssetStorage, get_asset_storage

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}


@router.get("/healthz")
async def healthz(storage: AssetStorage = Depends(get_asset_storage)) -> dict[str, str]:
    return {"status": "ok", "storage": "ok" if storage.root.is_dir() else "missing"}
