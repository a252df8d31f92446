from __future__ import annotations

from typing import Any, Dict, List, Optional

from scroll_harvester.core.models import EntityType, OutputRecord
from scroll_harvester.utils.time import from_unix

POST_URL = "https://www.instagram.com/p/{shortcode}/"

_QUERY_FIELD = {
    EntityType.PROFILE_POSTS: "queryUsername",
    EntityType.HASHTAG_POSTS: "queryTag",
    EntityType.LOCATION_POSTS: "queryLocation",
}


def build_records(entity_type: EntityType, items: List[Any], entity_id: str) -> List[OutputRecord]:
    """Project translated items into output records for ``entity_id``."""
    if entity_type.is_comments:
        return [comment_record(item, entity_id) for item in items]
    if entity_type.is_posts:
        return [post_record(item, entity_type, entity_id) for item in items]
    if entity_type.is_user_list:
        return [user_record(item, entity_id) for item in items]
    raise ValueError(f"Unsupported entity type: {entity_type}")


def comment_record(item: Dict[str, Any], entity_id: str) -> OutputRecord:
    node = item.get("node") or {}
    owner = node.get("owner") or {}
    return OutputRecord(
        id=_str_or_none(node.get("id")),
        timestamp=from_unix(node.get("created_at")),
        entity_id=entity_id,
        fields={
            "postId": entity_id,
            "text": node.get("text"),
            "ownerId": owner.get("id"),
            "ownerIsVerified": owner.get("is_verified"),
            "ownerUsername": owner.get("username"),
            "ownerProfilePicUrl": owner.get("profile_pic_url"),
        },
    )


def post_record(item: Dict[str, Any], entity_type: EntityType, entity_id: str) -> OutputRecord:
    node = item.get("node") or {}
    owner = node.get("owner") or {}
    shortcode = node.get("shortcode")

    caption_edges = (node.get("edge_media_to_caption") or {}).get("edges") or []
    caption = (caption_edges[0].get("node") or {}).get("text") if caption_edges else None
    likes = node.get("edge_liked_by") or node.get("edge_media_preview_like") or {}

    fields: Dict[str, Any] = {
        "shortCode": shortcode,
        "type": node.get("__typename"),
        "caption": caption,
        "url": POST_URL.format(shortcode=shortcode) if shortcode else None,
        "commentsCount": (node.get("edge_media_to_comment") or {}).get("count"),
        "likesCount": likes.get("count"),
        "ownerId": owner.get("id"),
        "displayUrl": node.get("display_url"),
    }
    fields[_QUERY_FIELD[entity_type]] = entity_id

    return OutputRecord(
        id=_str_or_none(node.get("id")),
        timestamp=from_unix(node.get("taken_at_timestamp")),
        entity_id=entity_id,
        fields=fields,
    )


def user_record(item: Dict[str, Any], entity_id: str) -> OutputRecord:
    fields = {k: v for k, v in item.items() if k != "id"}
    fields["sourceId"] = entity_id
    return OutputRecord(id=_str_or_none(item.get("id")), timestamp=None, entity_id=entity_id, fields=fields)


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
