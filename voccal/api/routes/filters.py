"""
Filter catalog endpoints.
"""

from typing import List

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from voccal.audio.catalog import FilterDescriptor, list_filters, resolve_filter

router = APIRouter()


class FilterInfo(BaseModel):
    """Public description of one voice filter."""
    id: str
    name: str
    emoji: str = ""
    description: str = ""
    color: str = ""
    playback_rate: float = Field(1.0, gt=0.0)
    enabled: bool = True

    @classmethod
    def from_descriptor(cls, descriptor: FilterDescriptor) -> "FilterInfo":
        return cls(**descriptor.to_dict())


@router.get("/filters", response_model=List[FilterInfo])
async def get_filters(include_disabled: bool = Query(False, description="Include effects hidden from the UI")):
    """List voice filters in display order, identity first."""
    return [FilterInfo.from_descriptor(f) for f in list_filters(include_disabled)]


@router.get("/filters/{filter_id}", response_model=FilterInfo)
async def get_filter(filter_id: str):
    """Get one filter. Unknown ids are a 404."""
    return FilterInfo.from_descriptor(resolve_filter(filter_id))
