# src/nexustrack/interfaces/discord/embeds.py
"""
Discord embed builders for every kind of postable update, plus the plain-text
rendering used when Discord rejects a rich payload.

Embeds are plain dicts in the shape the webhook endpoint expects.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

NEW_MOD_COLOUR = 0xDA8E35
UPDATED_MOD_COLOUR = 0x57A5CC
RELEASE_COLOUR = 0x2DD4BF
UNAVAILABLE_COLOUR = 0xB8312F
NOTICE_COLOUR = 0x7289DA

NEXUS_ICON = "https://staticdelivery.nexusmods.com/mods/2295/images/26/26-1742212559-1470988141.png"
SITE = "https://www.nexusmods.com"

# Discord limits
MAX_TITLE = 256
MAX_DESCRIPTION = 4096
MAX_FIELD_VALUE = 1024
MAX_CONTENT = 2000


def tracking_url(url: str, campaign: str, params: Optional[Dict[str, str]] = None) -> str:
    query = dict(params or {})
    query.update({"utm_source": "discord_bot", "utm_medium": "subscriptions", "utm_campaign": campaign})
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlencode(query)}"


def game_thumbnail(game_id: Any) -> str:
    return f"https://staticdelivery.nexusmods.com/Images/games/4_3/tile_{game_id}.jpg"


def mod_url(mod: Dict[str, Any]) -> str:
    return f"{SITE}/{mod['game']['domainName']}/mods/{mod['modId']}"


def user_url(member_id: Any) -> str:
    return f"{SITE}/users/{member_id}"


def collection_url(domain: str, slug: str) -> str:
    return f"{SITE}/games/{domain}/collections/{slug}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


# --- Changelog trimming ---

def trim_mod_changelog(lines: List[str], limit: int = 1000) -> str:
    """Joins changelog lines until the next line would reach `limit`."""
    changelog = ""
    for line in lines or []:
        candidate = f"{changelog}\n{line}" if changelog else line
        if len(candidate) >= limit:
            return changelog + "..."
        changelog = candidate
    return changelog


_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_BIG_HEADER = re.compile(r"^#{1,2} (.*)", re.MULTILINE)
_DETAILS = re.compile(r"<details><summary>(.*?)</summary>[\s\S]*?</details>")


def trim_collection_changelog(markdown: str, max_length: int = 2000) -> str:
    """
    Makes collection changelog markdown fit an embed: images dropped, large
    headers turned into h3, collapsed sections reduced to their summary.
    """
    text = _IMAGE.sub("", markdown or "")
    text = _BIG_HEADER.sub(r"### \1", text)
    text = _DETAILS.sub(r"\1 (View full changelog to expand)", text)
    trimmed = ""
    for line in text.split("\n"):
        candidate = f"{trimmed}\n{line}"
        if len(candidate) >= max_length:
            return trimmed + "..."
        trimmed = candidate
    return trimmed


# --- Game items ---

def mod_embed(mod: Dict[str, Any], compact: bool, occurred_at: datetime, updated: bool = False) -> Dict[str, Any]:
    """New or updated mod announced to a game subscription."""
    game = mod.get("game") or {}
    thumb = game_thumbnail(game.get("id"))
    picture = mod.get("pictureUrl")
    category = (mod.get("modCategory") or {}).get("name", "Unknown")
    uploader = mod.get("uploader") or {}

    embed: Dict[str, Any] = {
        "title": _clip(mod.get("name") or "Untitled mod", MAX_TITLE),
        "url": tracking_url(mod_url(mod), "subscribedGame"),
        "description": _clip(mod.get("summary") or "_No summary_", MAX_DESCRIPTION),
        "timestamp": _iso(occurred_at),
        "footer": {"text": f"{game.get('name', '')}  •  {category}  •  v{mod.get('version') or '?'}"},
        "fields": [
            {"name": "Author", "value": mod.get("author") or uploader.get("name") or "Unknown", "inline": True},
            {
                "name": "Uploader",
                "value": f"[{uploader.get('name', 'Unknown')}]({tracking_url(user_url(uploader.get('memberId')), 'subscribedGame')})",
                "inline": True,
            },
        ],
    }
    if compact:
        if picture:
            embed["thumbnail"] = {"url": picture}
        embed["footer"]["icon_url"] = thumb
    else:
        embed["thumbnail"] = {"url": thumb}
        if picture:
            embed["image"] = {"url": picture}

    if updated:
        embed["color"] = UPDATED_MOD_COLOUR
        embed["author"] = {"name": f"Mod Updated ({game.get('name', '')})", "icon_url": NEXUS_ICON}
        files = mod.get("files") or []
        if files:
            latest = files[0]
            changelog = trim_mod_changelog([f"- {t}" for t in latest.get("changelogText") or []], MAX_FIELD_VALUE - 4)
            if changelog:
                embed["fields"].append({"name": f"Changelog (v{latest.get('version')})", "value": changelog})
    else:
        embed["color"] = NEW_MOD_COLOUR
        embed["author"] = {"name": f"New Mod Upload ({game.get('name', '')})", "icon_url": NEXUS_ICON}
    return embed


# --- Mod items ---

def mod_file_embed(mod: Dict[str, Any], file: Dict[str, Any], compact: bool, occurred_at: datetime) -> Dict[str, Any]:
    """A new file on a tracked mod."""
    game = mod.get("game") or {}
    uploader = mod.get("uploader") or {}
    domain = game.get("domainName")
    changelog = trim_mod_changelog(file.get("changelogText") or [], 500 if compact else 1000)
    description = f"A new version can be downloaded from [{mod.get('name')}]({tracking_url(mod_url(mod), 'subscribedMod')}) on Nexus Mods.\n"
    if changelog:
        description += f"## Changelog\n{changelog}"
    embed = {
        "color": RELEASE_COLOUR,
        "author": {
            "name": uploader.get("name", "Unknown"),
            "url": tracking_url(user_url(uploader.get("memberId")), "subscribedMod"),
            "icon_url": uploader.get("avatar"),
        },
        "title": _clip(f"{file.get('name')} v{file.get('version')} is now available!", MAX_TITLE),
        "description": _clip(description, MAX_DESCRIPTION),
        "timestamp": _iso(occurred_at),
        "footer": {"text": f"{game.get('name', '')} • v{mod.get('version') or '?'}", "icon_url": NEXUS_ICON},
        "fields": [
            {
                "name": "Mod Manager",
                "value": (
                    f"[Download ↗](https://discordbot.nexusmods.com/nxm?type=mod&domain={domain}"
                    f"&mod_id={mod.get('modId')}&file_id={file.get('fileId')})\n-# Requires Premium"
                ),
                "inline": True,
            },
            {
                "name": "Nexus Mods",
                "value": f"[View Files ↗]({tracking_url(mod_url(mod), 'subscribedMod', {'tab': 'files'})})",
                "inline": True,
            },
        ],
    }
    if mod.get("pictureUrl"):
        embed["thumbnail"] = {"url": mod["pictureUrl"]}
    return embed


# --- Collection items ---

def collection_revision_embed(
    collection: Dict[str, Any],
    revision: Dict[str, Any],
    compact: bool,
    occurred_at: datetime,
) -> Dict[str, Any]:
    game = collection.get("game") or {}
    user = collection.get("user") or {}
    domain = game.get("domainName")
    slug = collection.get("slug")
    number = revision.get("revisionNumber")
    notes = (revision.get("collectionChangelog") or {}).get("description") or ""
    changelog = trim_collection_changelog(notes, 500 if compact else 2000) if notes else "__Not provided__"
    embed = {
        "color": RELEASE_COLOUR,
        "author": {
            "name": user.get("name", "Unknown"),
            "url": tracking_url(user_url(user.get("memberId")), "subscribedCollection"),
            "icon_url": user.get("avatar"),
        },
        "title": _clip(f"{collection.get('name')} Revision {number} is now available!", MAX_TITLE),
        "description": _clip(f"## Changelog\n{changelog}", MAX_DESCRIPTION),
        "timestamp": _iso(occurred_at),
        "footer": {"text": game.get("name", ""), "icon_url": NEXUS_ICON},
        "fields": [
            {
                "name": "Mod Manager",
                "value": f"[Download ↗](https://discordbot.nexusmods.com/nxm?type=collection&domain={domain}&slug={slug}&rev={number})",
                "inline": True,
            },
            {
                "name": "Nexus Mods",
                "value": f"[Revision {number} ↗]({tracking_url(f'{collection_url(domain, slug)}/revisions/{number}', 'subscribedCollection')})",
                "inline": True,
            },
        ],
    }
    tile = (collection.get("tileImage") or {}).get("url")
    if tile:
        embed["thumbnail"] = {"url": tile}
    return embed


# --- User items ---

def user_mod_embed(user: Dict[str, Any], mod: Dict[str, Any], compact: bool, occurred_at: datetime, updated: bool = False) -> Dict[str, Any]:
    """An author published or updated one of their mods."""
    embed = mod_embed(mod, compact, occurred_at, updated=updated)
    verb = "updated" if updated else "uploaded a new mod"
    embed["author"] = {
        "name": f"{user.get('name', 'Unknown')} {verb}",
        "url": tracking_url(user_url(user.get("memberId")), "subscribedUser"),
        "icon_url": user.get("avatar"),
    }
    return embed


def username_changed_embed(old: str, new: str) -> Dict[str, Any]:
    return {
        "title": "Username changed!",
        "description": f"{old} changed their username to {new}",
        "color": NOTICE_COLOUR,
    }


# --- Availability notices ---

_STATUS_TEXT = {
    "hidden": "has been hidden by the author",
    "under_moderation": "is under moderation",
    "deleted": "has been deleted",
    "wastebinned": "has been removed",
    "discarded": "has been discarded",
    "banned": "has been banned",
}


def unavailable_embed(kind: str, name: str, status: str, url: Optional[str], permanent: bool) -> Dict[str, Any]:
    reason = _STATUS_TEXT.get(status, f"is unavailable ({status})")
    follow_up = (
        "It will no longer be tracked in this channel."
        if permanent
        else "Updates will resume if it becomes available again."
    )
    embed = {
        "title": _clip(f"{name} is unavailable", MAX_TITLE),
        "description": f"This {kind} {reason} on Nexus Mods. {follow_up}",
        "color": UNAVAILABLE_COLOUR,
        "footer": {"text": f"Status: {status}", "icon_url": NEXUS_ICON},
    }
    if url:
        embed["url"] = url
    return embed


# --- Plain text ---

def embed_to_text(embed: Dict[str, Any]) -> str:
    """Plain-text rendering of an embed, sent when the rich post is refused."""
    parts = []
    author = (embed.get("author") or {}).get("name")
    if author:
        parts.append(f"-# {author}")
    title = embed.get("title")
    if title:
        url = embed.get("url")
        parts.append(f"**{title}**" + (f"\n<{url}>" if url else ""))
    description = embed.get("description")
    if description:
        parts.append(_clip(description, 600))
    return _clip("\n".join(parts), MAX_CONTENT)


def join_texts(texts: List[str], content: Optional[str] = None) -> str:
    """Joins several plain-text updates into one message body."""
    body = "\n\n".join(t for t in texts if t)
    if content:
        body = f"{content}\n\n{body}" if body else content
    return _clip(body, MAX_CONTENT)
