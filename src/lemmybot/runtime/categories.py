from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ResourceCategory(str, Enum):
    COMMENT = "comment"
    POST = "post"
    PRIVATE_MESSAGE = "private_message"
    REGISTRATION_APPLICATION = "registration_application"
    MENTION = "mention"
    REPLY = "reply"
    COMMENT_REPORT = "comment_report"
    POST_REPORT = "post_report"
    PRIVATE_MESSAGE_REPORT = "private_message_report"
    MOD_REMOVE_POST = "mod_remove_post"
    MOD_LOCK_POST = "mod_lock_post"
    MOD_FEATURE_POST = "mod_feature_post"
    MOD_REMOVE_COMMENT = "mod_remove_comment"
    MOD_REMOVE_COMMUNITY = "mod_remove_community"
    MOD_BAN_FROM_COMMUNITY = "mod_ban_from_community"
    MOD_ADD_MOD_TO_COMMUNITY = "mod_add_mod_to_community"
    MOD_TRANSFER_COMMUNITY = "mod_transfer_community"
    MOD_ADD_ADMIN = "mod_add_admin"
    MOD_BAN_FROM_SITE = "mod_ban_from_site"


COMMUNITY_ACTOR_PATH = ("community", "actor_id")


@dataclass(frozen=True)
class CategorySpec:
    category: ResourceCategory
    table: str
    op: str
    response_key: str
    id_path: Tuple[str, ...]
    community_path: Optional[Tuple[str, ...]] = COMMUNITY_ACTOR_PATH
    requires_auth: bool = True
    modlog_type: Optional[str] = None
    default_sort: Optional[str] = None

    def item_id(self, item: Dict[str, Any]) -> Optional[int]:
        value = dig(item, self.id_path)
        if isinstance(value, bool) or value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def actor_id(self, item: Dict[str, Any]) -> Optional[str]:
        if self.community_path is None:
            return None
        value = dig(item, self.community_path)
        return value if isinstance(value, str) and value else None

    def extract_items(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        value = data.get(self.response_key)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    def fetch_params(
        self,
        *,
        auth: Optional[str],
        listing_type: str,
        limit: int,
        sort: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"auth": auth, "limit": limit}
        if self.modlog_type:
            params["type_"] = self.modlog_type
            return params
        if self.category in {ResourceCategory.POST, ResourceCategory.COMMENT}:
            params["type_"] = listing_type
            params["sort"] = sort or self.default_sort
            return params
        if self.category in {
            ResourceCategory.COMMENT_REPORT,
            ResourceCategory.POST_REPORT,
            ResourceCategory.PRIVATE_MESSAGE_REPORT,
        }:
            params["unresolved_only"] = True
            return params
        params["unread_only"] = True
        if self.default_sort:
            params["sort"] = sort or self.default_sort
        return params


def dig(item: Any, path: Tuple[str, ...]) -> Any:
    value = item
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _mod(category: ResourceCategory, table: str, key: str, view: str, modlog_type: str, community: bool = True):
    return CategorySpec(
        category=category,
        table=table,
        op="GetModlog",
        response_key=key,
        id_path=(view, "id"),
        community_path=COMMUNITY_ACTOR_PATH if community else None,
        modlog_type=modlog_type,
    )


C = ResourceCategory

CATEGORY_SPECS: Dict[ResourceCategory, CategorySpec] = {
    spec.category: spec
    for spec in (
        CategorySpec(C.COMMENT, "comments", "GetComments", "comments", ("comment", "id"),
                     requires_auth=False, default_sort="New"),
        CategorySpec(C.POST, "posts", "GetPosts", "posts", ("post", "id"),
                     requires_auth=False, default_sort="New"),
        CategorySpec(C.PRIVATE_MESSAGE, "messages", "GetPrivateMessages", "private_messages",
                     ("private_message", "id"), community_path=None),
        CategorySpec(C.REGISTRATION_APPLICATION, "registrations", "ListRegistrationApplications",
                     "registration_applications", ("registration_application", "id"), community_path=None),
        CategorySpec(C.MENTION, "mentions", "GetPersonMentions", "mentions", ("person_mention", "id"),
                     default_sort="New"),
        CategorySpec(C.REPLY, "replies", "GetReplies", "replies", ("comment_reply", "id"), default_sort="New"),
        CategorySpec(C.COMMENT_REPORT, "comment_reports", "ListCommentReports", "comment_reports",
                     ("comment_report", "id")),
        CategorySpec(C.POST_REPORT, "post_reports", "ListPostReports", "post_reports", ("post_report", "id")),
        CategorySpec(C.PRIVATE_MESSAGE_REPORT, "message_reports", "ListPrivateMessageReports",
                     "private_message_reports", ("private_message_report", "id"), community_path=None),
        _mod(C.MOD_REMOVE_POST, "removed_posts", "removed_posts", "mod_remove_post", "ModRemovePost"),
        _mod(C.MOD_LOCK_POST, "locked_posts", "locked_posts", "mod_lock_post", "ModLockPost"),
        _mod(C.MOD_FEATURE_POST, "featured_posts", "featured_posts", "mod_feature_post", "ModFeaturePost"),
        _mod(C.MOD_REMOVE_COMMENT, "removed_comments", "removed_comments", "mod_remove_comment",
             "ModRemoveComment"),
        _mod(C.MOD_REMOVE_COMMUNITY, "removed_communities", "removed_communities", "mod_remove_community",
             "ModRemoveCommunity"),
        _mod(C.MOD_BAN_FROM_COMMUNITY, "community_bans", "banned_from_community", "mod_ban_from_community",
             "ModBanFromCommunity"),
        _mod(C.MOD_ADD_MOD_TO_COMMUNITY, "mods_added_to_communities", "added_to_community",
             "mod_add_community", "ModAddCommunity"),
        _mod(C.MOD_TRANSFER_COMMUNITY, "mods_transferred_to_communities", "transferred_to_community",
             "mod_transfer_community", "ModTransferCommunity"),
        _mod(C.MOD_ADD_ADMIN, "admins_added", "added", "mod_add", "ModAdd", community=False),
        _mod(C.MOD_BAN_FROM_SITE, "site_bans", "banned", "mod_ban", "ModBan", community=False),
    )
}


def categories_for_op(op: str) -> List[CategorySpec]:
    return [spec for spec in CATEGORY_SPECS.values() if spec.op == op]


def get_spec(category: Any) -> CategorySpec:
    return CATEGORY_SPECS[ResourceCategory(category)]
