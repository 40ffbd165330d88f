# src/nexustrack/domain/entities.py
"""
Core business entities for channel subscriptions.

A subscribed item is a closed sum type: `GameItem | ModItem | CollectionItem | UserItem`.
Code that needs per-type behaviour matches on the concrete class instead of
comparing type strings, so adding a new kind of item shows up everywhere it
has to be handled.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; everything in the domain is UTC-aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- ENUMERATIONS ---

class SubscribedItemType(Enum):
    """The kinds of entity a channel can track."""
    GAME = "game"
    MOD = "mod"
    COLLECTION = "collection"
    USER = "user"


class UpdateCategory(Enum):
    """A single upstream question asked on behalf of an item."""
    NEW_MODS = "new_mods"
    UPDATED_MODS = "updated_mods"
    MOD_FILES = "mod_files"
    COLLECTION_REVISIONS = "collection_revisions"
    USER_NEW_MODS = "user_new_mods"
    USER_UPDATED_MODS = "user_updated_mods"


# Categories the subscription cache can answer for many items with one query.
BATCHED_CATEGORIES = (UpdateCategory.NEW_MODS, UpdateCategory.UPDATED_MODS)


class ModStatus:
    PUBLISHED = "published"
    HIDDEN = "hidden"
    UNDER_MODERATION = "under_moderation"
    DELETED = "deleted"
    WASTEBINNED = "wastebinned"

    TEMPORARILY_UNAVAILABLE = (HIDDEN, UNDER_MODERATION)
    PERMANENTLY_UNAVAILABLE = (DELETED, WASTEBINNED)


class CollectionStatus:
    LISTED = "listed"
    UNLISTED = "unlisted"
    UNDER_MODERATION = "under_moderation"
    DISCARDED = "discarded"

    VISIBLE = (LISTED, UNLISTED)


# --- ENTITIES ---

@dataclass
class SubscribedItemBase:
    """Fields every tracked item carries, regardless of what it tracks."""
    id: int
    parent: int
    entityid: str
    title: str
    last_update: datetime

    owner: Optional[str] = None
    crosspost: bool = False
    compact: bool = False
    message: Optional[str] = None
    # None defers to the channel's own content policy.
    nsfw: Optional[bool] = None
    sfw: Optional[bool] = None
    error_count: int = 0
    last_status: Optional[str] = None
    created: datetime = field(default_factory=utcnow)

    type: ClassVar[SubscribedItemType]

    def __post_init__(self):
        self.last_update = ensure_utc(self.last_update)
        self.created = ensure_utc(self.created)

    def show_adult(self, channel_nsfw: bool) -> bool:
        return self.nsfw if self.nsfw is not None else channel_nsfw

    def show_non_adult(self) -> bool:
        return self.sfw if self.sfw is not None else True

    def allows(self, adult: bool, channel_nsfw: bool) -> bool:
        """Content policy check for a single upstream entity."""
        if adult:
            return self.show_adult(channel_nsfw)
        return self.show_non_adult()

    def categories(self) -> List[UpdateCategory]:
        raise NotImplementedError


@dataclass
class GameItem(SubscribedItemBase):
    show_new: bool = True
    show_updates: bool = True

    type: ClassVar[SubscribedItemType] = SubscribedItemType.GAME

    @property
    def domain(self) -> str:
        return self.entityid

    def categories(self) -> List[UpdateCategory]:
        categories = []
        if self.show_new:
            categories.append(UpdateCategory.NEW_MODS)
        if self.show_updates:
            categories.append(UpdateCategory.UPDATED_MODS)
        return categories


@dataclass
class ModItem(SubscribedItemBase):
    type: ClassVar[SubscribedItemType] = SubscribedItemType.MOD

    @property
    def uid(self) -> str:
        return self.entityid

    def categories(self) -> List[UpdateCategory]:
        return [UpdateCategory.MOD_FILES]


@dataclass
class CollectionItem(SubscribedItemBase):
    type: ClassVar[SubscribedItemType] = SubscribedItemType.COLLECTION

    @property
    def domain(self) -> str:
        return self.entityid.split(":", 1)[0]

    @property
    def slug(self) -> str:
        return self.entityid.split(":", 1)[-1]

    def categories(self) -> List[UpdateCategory]:
        return [UpdateCategory.COLLECTION_REVISIONS]


@dataclass
class UserItem(SubscribedItemBase):
    type: ClassVar[SubscribedItemType] = SubscribedItemType.USER

    @property
    def member_id(self) -> int:
        return int(self.entityid)

    def categories(self) -> List[UpdateCategory]:
        return [UpdateCategory.USER_NEW_MODS, UpdateCategory.USER_UPDATED_MODS]


SubscribedItem = Union[GameItem, ModItem, CollectionItem, UserItem]

ITEM_CLASSES: Dict[SubscribedItemType, type] = {
    SubscribedItemType.GAME: GameItem,
    SubscribedItemType.MOD: ModItem,
    SubscribedItemType.COLLECTION: CollectionItem,
    SubscribedItemType.USER: UserItem,
}

_GAME_ONLY_FIELDS = ("show_new", "show_updates")


def build_item(item_type: SubscribedItemType, **fields: Any) -> SubscribedItem:
    """Builds the right variant for `item_type`, dropping fields it doesn't own."""
    cls = ITEM_CLASSES[item_type]
    if cls is not GameItem:
        for name in _GAME_ONLY_FIELDS:
            fields.pop(name, None)
    else:
        for name in _GAME_ONLY_FIELDS:
            if fields.get(name) is None:
                fields.pop(name, None)
    return cls(**fields)


@dataclass
class SubscribedChannel:
    """A Discord channel receiving updates through its own webhook."""
    id: int
    guild_id: str
    channel_id: str
    webhook_id: str
    webhook_token: str

    nsfw: bool = False
    unreachable: bool = False
    unreachable_since: Optional[datetime] = None
    last_update: Optional[datetime] = None
    created: datetime = field(default_factory=utcnow)

    items: List[SubscribedItem] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.unreachable_since = ensure_utc(self.unreachable_since)
        self.last_update = ensure_utc(self.last_update)
        self.created = ensure_utc(self.created)


@dataclass(frozen=True)
class PostableUpdate:
    """One render-ready change, handed from the resolver to the delivery pipeline."""
    type: SubscribedItemType
    occurred_at: datetime
    entity: Dict[str, Any]
    embed: Dict[str, Any]
    text: str
    sub_id: int

    message: Optional[str] = None
    crosspost: bool = False
    # Availability status to remember once delivered (mods, collections, users).
    status: Optional[str] = None
    # The item is gone upstream for good; delete it after this is delivered.
    retire: bool = False


@dataclass
class Resolution:
    """What the resolver found for one item in one cycle."""
    updates: List[PostableUpdate] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    # Availability status observed upstream, persisted once delivery succeeds.
    status: Optional[str] = None
    # The entity is gone for good; the item is deleted after delivery.
    retire: bool = False
    # The entity was renamed upstream (authors changing username).
    title: Optional[str] = None

    @property
    def complete(self) -> bool:
        return not self.errors


@dataclass
class CycleReport:
    """Summary of one poll-resolve-deliver cycle."""
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    channels: int = 0
    items: int = 0
    delivered: int = 0
    # Items whose watermark was reset by a forced cycle.
    refreshed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None
