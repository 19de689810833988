from fastapi import APIRouter, Depends, HTTPException, status

from src.shortener.api.deps import get_registry
from src.shortener.core.config import settings
from src.shortener.core.errors import NotFound, ShortCodeTaken
from src.shortener.schemas.link import (
    LinkBulkCreate,
    LinkCreate,
    RegistrySummary,
    ShortLink,
    ShortLinkOut,
)
from src.shortener.services.registry import Registry

router = APIRouter()


def to_out(link: ShortLink) -> ShortLinkOut:
    return ShortLinkOut(
        **link.model_dump(),
        short_url=f"{settings.BASE_URL.rstrip('/')}/{link.short_code}",
    )


@router.post("/shorten", response_model=ShortLinkOut, status_code=status.HTTP_201_CREATED)
def create_link(link: LinkCreate, registry: Registry = Depends(get_registry)):
    """
    Create a shortened URL.

    Returns 400 for an invalid URL, validity period or custom code and 409 when
    the custom code is already taken.
    """
    try:
        created = registry.create(
            link.original_url, link.custom_code, link.validity_minutes
        )
    except ShortCodeTaken as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return to_out(created)


@router.post("/shorten/bulk", response_model=list[ShortLinkOut], status_code=status.HTTP_201_CREATED)
def create_links(batch: LinkBulkCreate, registry: Registry = Depends(get_registry)):
    """
    Create several shortened URLs in one request.

    The batch is rejected as a whole if any item is invalid.
    """
    if len(batch.links) > settings.MAX_BULK_URLS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.MAX_BULK_URLS} URLs per request",
        )
    try:
        created = registry.create_many(batch.links)
    except ShortCodeTaken as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return [to_out(link) for link in created]


@router.get("/stats", response_model=list[ShortLinkOut])
def list_links(registry: Registry = Depends(get_registry)):
    """
    List every short link, expired ones included, in creation order.
    """
    return [to_out(link) for link in registry.list()]


@router.get("/stats/summary", response_model=RegistrySummary)
def get_summary(registry: Registry = Depends(get_registry)):
    return registry.summary()


@router.get("/stats/{short_code}", response_model=ShortLinkOut)
def get_link_stats(short_code: str, registry: Registry = Depends(get_registry)):
    """
    Get statistics for a shortened URL without counting a click.
    """
    try:
        return to_out(registry.get(short_code))
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/links/{short_code}", status_code=status.HTTP_204_NO_CONTENT)
def delete_link(short_code: str, registry: Registry = Depends(get_registry)):
    """
    Purge a single short link.
    """
    if not registry.purge(short_code):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="URL not found"
        )
