# src/nexustrack/domain/__init__.py
from .entities import (
    BATCHED_CATEGORIES,
    CollectionItem,
    CollectionStatus,
    CycleReport,
    GameItem,
    ModItem,
    ModStatus,
    PostableUpdate,
    Resolution,
    SubscribedChannel,
    SubscribedItem,
    SubscribedItemBase,
    SubscribedItemType,
    UpdateCategory,
    UserItem,
    build_item,
    ensure_utc,
    utcnow,
)

__all__ = [
    "BATCHED_CATEGORIES",
    "CollectionItem",
    "CollectionStatus",
    "CycleReport",
    "GameItem",
    "ModItem",
    "ModStatus",
    "PostableUpdate",
    "Resolution",
    "SubscribedChannel",
    "SubscribedItem",
    "SubscribedItemBase",
    "SubscribedItemType",
    "UpdateCategory",
    "UserItem",
    "build_item",
    "ensure_utc",
    "utcnow",
]
