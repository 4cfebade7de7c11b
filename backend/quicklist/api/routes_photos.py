from fastapi import APIRouter, Depends, File, Request, UploadFile

from quicklist.api.deps import http_error, read_photos, request_context
from quicklist.core.config import Settings, get_settings
from quicklist.core.errors import NoUsablePhotos, QuickListError
from quicklist.pipeline.quality import check_photo
from quicklist.schemas.quality import PhotoCheck

router = APIRouter(prefix="/v1/photos", tags=["photos"])


@router.post("/check", response_model=PhotoCheck, response_model_by_alias=True)
async def check(
    request: Request,
    photo: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
):
    """
    Advisory blur + quality check for one photo before upload.
    Never blocks a listing; needsRetake is a suggestion.
    """
    try:
        (uploaded,) = await read_photos([photo])
        if not uploaded.usable:
            raise NoUsablePhotos("Photo is empty")
        async with request_context(request, settings) as ctx:
            return await check_photo(uploaded, ctx)
    except QuickListError as e:
        raise http_error(e)
