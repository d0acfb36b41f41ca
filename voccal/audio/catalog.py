"""
Static catalog of selectable voice filters.

The catalog is an in-process table: it is not loaded from configuration
and changes only with a redeploy.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from voccal.core.exceptions import UnknownFilterError

IDENTITY_FILTER_ID = "original"


@dataclass(frozen=True)
class FilterDescriptor:
    """One selectable voice effect."""
    id: str
    name: str
    emoji: str = ""
    description: str = ""
    color: str = ""
    playback_rate: float = 1.0  # time-stretch factor, pitch follows
    enabled: bool = True  # offered by the active UI

    @property
    def is_identity(self) -> bool:
        return self.id == IDENTITY_FILTER_ID

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "description": self.description,
            "color": self.color,
            "playback_rate": self.playback_rate,
            "enabled": self.enabled,
        }


FILTER_CATALOG: Tuple[FilterDescriptor, ...] = (
    FilterDescriptor(
        id=IDENTITY_FILTER_ID,
        name="Original",
        emoji="🎤",
        description="No effect",
        color="bg-gray-500",
    ),
    FilterDescriptor(
        id="warm",
        name="Warm",
        emoji="☀️",
        description="Warm, soft tone",
        color="bg-orange-400",
    ),
    FilterDescriptor(
        id="bright",
        name="Crystal",
        emoji="✨",
        description="Clear, crisp voice",
        color="bg-yellow-400",
    ),
    FilterDescriptor(
        id="radio",
        name="Radio",
        emoji="📻",
        description="Vintage radio style",
        color="bg-orange-500",
    ),
    FilterDescriptor(
        id="chipmunk",
        name="Chipmunk",
        emoji="🐿️",
        description="Cute high-pitched voice",
        color="bg-yellow-500",
        playback_rate=1.35,
    ),
    FilterDescriptor(
        id="deep",
        name="Deep",
        emoji="🎸",
        description="Deep voice",
        color="bg-blue-700",
        playback_rate=0.75,
    ),
    FilterDescriptor(
        id="robot",
        name="Robot",
        emoji="🤖",
        description="Robotic voice",
        color="bg-cyan-500",
        playback_rate=1.1,
    ),
    # Spatial and transmission effects, not offered by the active UI
    FilterDescriptor(
        id="echo",
        name="Echo",
        emoji="🏔️",
        description="Mountain echo",
        color="bg-purple-500",
        playback_rate=0.95,
        enabled=False,
    ),
    FilterDescriptor(
        id="underwater",
        name="Underwater",
        emoji="🌊",
        description="Aquatic ambience",
        color="bg-blue-500",
        playback_rate=0.85,
        enabled=False,
    ),
    FilterDescriptor(
        id="telephone",
        name="Telephone",
        emoji="☎️",
        description="Phone call",
        color="bg-green-600",
        enabled=False,
    ),
    FilterDescriptor(
        id="stadium",
        name="Stadium",
        emoji="🏟️",
        description="Stadium announcement",
        color="bg-red-500",
        enabled=False,
    ),
    FilterDescriptor(
        id="space",
        name="Space",
        emoji="🚀",
        description="Space communication",
        color="bg-indigo-600",
        playback_rate=0.9,
        enabled=False,
    ),
)

_ACTIVE_FILTERS: Tuple[FilterDescriptor, ...] = tuple(
    f for f in FILTER_CATALOG if f.enabled
)

_BY_ID: Dict[str, FilterDescriptor] = {f.id: f for f in FILTER_CATALOG}


def list_filters(include_disabled: bool = False) -> Tuple[FilterDescriptor, ...]:
    """
    List selectable filters in display order.

    The identity filter is always first. The same tuple is returned
    on every call.

    Args:
        include_disabled: Also return effects the UI does not offer

    Returns:
        Ordered tuple of filter descriptors
    """
    return FILTER_CATALOG if include_disabled else _ACTIVE_FILTERS


def resolve_filter(filter_id: str) -> FilterDescriptor:
    """
    Look up a filter by id.

    Raises:
        UnknownFilterError: If the id is not in the catalog
    """
    try:
        return _BY_ID[filter_id]
    except KeyError:
        raise UnknownFilterError(filter_id) from None
