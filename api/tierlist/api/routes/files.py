from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from tierlist.api.errors import INVALID_FILE_CODE
from tierlist.services.storage import AssetStorage, get_asset_storage

router = APIRouter()


@router.get("/{user_id}/{category}/{entity_id}/{file_name}")
async def get_user_file(
    user_id: str,
    category: str,
    entity_id: str,
    file_name: str,
    storage: AssetStorage = Depends(get_asset_storage),
) -> FileResponse:
    try:
        path = storage.resolve(f"{user_id}/{category}/{entity_id}/{file_name}")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": INVALID_FILE_CODE, "message": "invalid file was requested"},
        ) from exc
    if not path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "gen0-004-00", "message": "file not found"},
        )
    return FileResponse(path, media_type="image/jpeg")
