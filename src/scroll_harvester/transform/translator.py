"""
Translation of raw paginated responses into TranslatedPage.

Every entity type has one collection inside the response ``data`` object.
Comment pages arrive newest-first and are flipped to chronological order;
post pages keep the remote order; follower/following/liker pages are mapped
to a minimal user projection.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from scroll_harvester.core.errors import MalformedResponseError
from scroll_harvester.core.models import EntityType, RawPage, TranslatedPage

_POST_COLLECTIONS: Dict[EntityType, Tuple[str, str]] = {
    EntityType.PROFILE_POSTS: ("user", "edge_owner_to_timeline_media"),
    EntityType.HASHTAG_POSTS: ("hashtag", "edge_hashtag_to_media"),
    EntityType.LOCATION_POSTS: ("location", "edge_location_to_media"),
}

_USER_COLLECTIONS: Dict[EntityType, Tuple[str, str]] = {
    EntityType.FOLLOWERS: ("user", "edge_followed_by"),
    EntityType.FOLLOWING: ("user", "edge_follow"),
    EntityType.LIKERS: ("shortcode_media", "edge_liked_by"),
}


def translate(entity_type: EntityType, raw_page: RawPage) -> TranslatedPage:
    """Normalize ``raw_page`` according to ``entity_type``."""
    data = raw_page.payload if isinstance(raw_page.payload, dict) else {}

    if entity_type is EntityType.COMMENTS:
        return translate_comments(data)
    if entity_type in _POST_COLLECTIONS:
        return translate_posts(entity_type, data)
    if entity_type in _USER_COLLECTIONS:
        return translate_user_list(entity_type, data)

    raise ValueError(f"Unsupported entity type: {entity_type}")


def translate_comments(data: Dict[str, Any]) -> TranslatedPage:
    media = data.get("shortcode_media") or {}
    timeline = media.get("edge_media_to_parent_comment")
    if not timeline:
        return TranslatedPage(items=[], has_next_page=False, total_count=None)

    page_info = timeline.get("page_info") or {}
    edges = list(timeline.get("edges") or [])
    edges.reverse()
    return TranslatedPage(
        items=edges,
        has_next_page=bool(page_info.get("has_next_page", False)),
        total_count=timeline.get("count"),
        end_cursor=page_info.get("end_cursor"),
    )


def translate_posts(entity_type: EntityType, data: Dict[str, Any]) -> TranslatedPage:
    root, edge_name = _POST_COLLECTIONS[entity_type]
    timeline = (data.get(root) or {}).get(edge_name) or {}

    edges: List[Any] = list(timeline.get("edges") or [])
    page_info = timeline.get("page_info") or {}
    count = timeline.get("count")
    return TranslatedPage(
        items=edges,
        has_next_page=bool(page_info.get("has_next_page", False)),
        # the count field is unreliable for feeds, fall back to what we got
        total_count=count if count is not None else len(edges),
        end_cursor=page_info.get("end_cursor"),
    )


def translate_user_list(entity_type: EntityType, data: Dict[str, Any]) -> TranslatedPage:
    root, edge_name = _USER_COLLECTIONS[entity_type]
    parent = data.get(root)
    if not isinstance(parent, dict):
        raise MalformedResponseError(f"{entity_type.value} query does not contain {root} object")
    collection = parent.get(edge_name)
    if not isinstance(collection, dict):
        raise MalformedResponseError(f"{entity_type.value} query does not contain {edge_name} object")

    page_info = collection.get("page_info") or {}
    end_cursor: Optional[str] = page_info.get("end_cursor") or None
    users = [project_user(edge.get("node") or {}) for edge in collection.get("edges") or []]
    return TranslatedPage(
        items=users,
        has_next_page=end_cursor is not None,
        total_count=collection.get("count"),
        end_cursor=end_cursor,
    )


def project_user(node: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": node.get("id"),
        "displayName": node.get("full_name"),
        "username": node.get("username"),
        "profilePicUrl": node.get("profile_pic_url"),
        "isPrivate": node.get("is_private"),
        "isVerified": node.get("is_verified"),
    }
