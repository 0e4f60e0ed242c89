from fastapi import APIRouter

from commandservice.api.dtos import VersionInfo

router = APIRouter(prefix="/api", tags=["Info"])


@router.get("/version", response_model=VersionInfo)
def get_version_endpoint():
    from commandservice.version import get_version
    return VersionInfo(version=get_version())
