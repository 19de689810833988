from fastapi import APIRouter, Depends, status

from src.shortener.api.deps import get_registry
from src.shortener.core.config import logger
from src.shortener.schemas.link import PurgeResult
from src.shortener.services.registry import Registry

router = APIRouter()


@router.post("/purge-expired", response_model=PurgeResult, status_code=status.HTTP_200_OK)
def purge_expired_links(registry: Registry = Depends(get_registry)):
    """
    Delete every short link whose validity period is over.
    """
    removed = registry.purge_expired()
    return PurgeResult(removed=removed)


@router.post("/purge-all", response_model=PurgeResult, status_code=status.HTTP_200_OK)
def purge_all_links(registry: Registry = Depends(get_registry)):
    """
    Delete every short link. Cannot be undone.
    """
    removed = registry.purge_all()
    logger.warning(f"All short links purged via maintenance endpoint ({removed} removed)")
    return PurgeResult(removed=removed)
