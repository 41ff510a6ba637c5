from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from ..lemmy_client import LemmyHttpClient, build_request, normalize_instance
from .connection import ConnectionManager
from .correlator import (
    SEARCH_COMMUNITIES,
    SEARCH_USERS,
    PendingOperationCorrelator,
    SearchCriteria,
)
from .state import future_days_to_unix_time


class Vote(IntEnum):
    UPVOTE = 1
    DOWNVOTE = -1
    NEUTRAL = 0


def correct_vote(vote: int) -> Vote:
    if vote < -1:
        return Vote.DOWNVOTE
    if vote > 1:
        return Vote.UPVOTE
    return Vote(int(vote))


@dataclass
class ParentResponse:
    type: str  # "post" or "comment"
    data: Dict[str, Any]


def parent_comment_id(comment: Dict[str, Any]) -> Optional[int]:
    """Parent comment id from a comment's ltree path ("0.12.34"), None for top level."""
    path = str(comment.get("path") or "").split(".")
    if len(path) <= 2:
        return None
    return int(path[-2])


class BotActions:
    """Outbound actions available to handlers.

    Writes are fire-and-forget and need a logged-in session; reads that have
    no direct reply go through the correlator.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        correlator: PendingOperationCorrelator,
        logger,
        http_client: Optional[LemmyHttpClient] = None,
    ):
        self.connection = connection
        self.correlator = correlator
        self.logger = logger
        self.http_client = http_client or LemmyHttpClient(connection.instance)

    def _send_authed(self, op: str, data: Dict[str, Any], description: str) -> bool:
        if not self.connection.connected:
            self.logger.warning("Must be connected to %s", description)
            return False
        if not self.connection.auth:
            self.logger.warning("Must log in to %s", description)
            return False
        self.logger.info("Action %s", description)
        self.connection.send(build_request(op, {**data, "auth": self.connection.auth}))
        return True

    def _send(self, op: str, data: Dict[str, Any]) -> None:
        self.connection.send(build_request(op, {**data, "auth": self.connection.auth}))

    # Content

    async def create_post(self, *, name: str, community_id: int, body: Optional[str] = None,
                          url: Optional[str] = None, nsfw: Optional[bool] = None) -> bool:
        return self._send_authed(
            "CreatePost",
            {"name": name, "community_id": community_id, "body": body, "url": url, "nsfw": nsfw},
            f"create post in community ID {community_id}",
        )

    async def create_comment(self, *, post_id: int, content: str, parent_id: Optional[int] = None) -> bool:
        target = f"comment ID {parent_id}" if parent_id else f"post ID {post_id}"
        return self._send_authed(
            "CreateComment",
            {"post_id": post_id, "content": content, "parent_id": parent_id},
            f"reply to {target}",
        )

    async def send_private_message(self, *, recipient_id: int, content: str) -> bool:
        return self._send_authed(
            "CreatePrivateMessage",
            {"recipient_id": recipient_id, "content": content},
            f"send private message to user ID {recipient_id}",
        )

    async def upload_image(self, image: bytes) -> Dict[str, Any]:
        return await asyncio.to_thread(self.http_client.upload_image, image, self.connection.auth or "")

    # Reports

    async def report_post(self, *, post_id: int, reason: str) -> bool:
        return self._send_authed(
            "CreatePostReport", {"post_id": post_id, "reason": reason}, f"report post ID {post_id} for {reason}"
        )

    async def report_comment(self, *, comment_id: int, reason: str) -> bool:
        return self._send_authed(
            "CreateCommentReport",
            {"comment_id": comment_id, "reason": reason},
            f"report comment ID {comment_id} for {reason}",
        )

    async def report_private_message(self, *, private_message_id: int, reason: str) -> bool:
        return self._send_authed(
            "CreatePrivateMessageReport",
            {"private_message_id": private_message_id, "reason": reason},
            f"report private message ID {private_message_id} for {reason}",
        )

    async def resolve_post_report(self, report_id: int) -> bool:
        return self._send_authed(
            "ResolvePostReport", {"report_id": report_id, "resolved": True}, f"resolve post report ID {report_id}"
        )

    async def resolve_comment_report(self, report_id: int) -> bool:
        return self._send_authed(
            "ResolveCommentReport",
            {"report_id": report_id, "resolved": True},
            f"resolve comment report ID {report_id}",
        )

    async def resolve_private_message_report(self, report_id: int) -> bool:
        return self._send_authed(
            "ResolvePrivateMessageReport",
            {"report_id": report_id, "resolved": True},
            f"resolve private message report ID {report_id}",
        )

    # Votes

    async def vote_post(self, *, post_id: int, vote: int) -> bool:
        score = correct_vote(vote)
        return self._send_authed(
            "CreatePostLike", {"post_id": post_id, "score": int(score)}, f"vote {score.name.lower()} on post ID {post_id}"
        )

    async def vote_comment(self, *, comment_id: int, vote: int) -> bool:
        score = correct_vote(vote)
        return self._send_authed(
            "CreateCommentLike",
            {"comment_id": comment_id, "score": int(score)},
            f"vote {score.name.lower()} on comment ID {comment_id}",
        )

    # Moderation

    async def ban_from_community(self, *, community_id: int, person_id: int, reason: Optional[str] = None,
                                 remove_data: Optional[bool] = None,
                                 days_until_expires: Optional[float] = None) -> bool:
        return self._send_authed(
            "BanFromCommunity",
            {
                "community_id": community_id,
                "person_id": person_id,
                "ban": True,
                "reason": reason,
                "remove_data": remove_data,
                "expires": future_days_to_unix_time(days_until_expires),
            },
            f"ban user ID {person_id} from community ID {community_id}",
        )

    async def ban_from_site(self, *, person_id: int, reason: Optional[str] = None,
                            remove_data: Optional[bool] = None,
                            days_until_expires: Optional[float] = None) -> bool:
        return self._send_authed(
            "BanPerson",
            {
                "person_id": person_id,
                "ban": True,
                "reason": reason,
                "remove_data": remove_data,
                "expires": future_days_to_unix_time(days_until_expires),
            },
            f"ban user ID {person_id} from site",
        )

    async def approve_registration_application(self, application_id: int) -> bool:
        return self._send_authed(
            "ApproveRegistrationApplication",
            {"id": application_id, "approve": True},
            f"approve registration application ID {application_id}",
        )

    async def reject_registration_application(self, application_id: int, deny_reason: Optional[str] = None) -> bool:
        return self._send_authed(
            "ApproveRegistrationApplication",
            {"id": application_id, "approve": False, "deny_reason": deny_reason},
            f"reject registration application ID {application_id}",
        )

    async def remove_post(self, *, post_id: int, reason: Optional[str] = None) -> bool:
        return self._send_authed(
            "RemovePost", {"post_id": post_id, "removed": True, "reason": reason}, f"remove post ID {post_id}"
        )

    async def remove_comment(self, *, comment_id: int, reason: Optional[str] = None) -> bool:
        return self._send_authed(
            "RemoveComment",
            {"comment_id": comment_id, "removed": True, "reason": reason},
            f"remove comment ID {comment_id}",
        )

    async def feature_post(self, *, post_id: int, featured: bool, feature_type: str = "Community") -> bool:
        verb = "feature" if featured else "unfeature"
        return self._send_authed(
            "FeaturePost",
            {"post_id": post_id, "featured": featured, "feature_type": feature_type},
            f"{verb} post ID {post_id}",
        )

    async def lock_post(self, *, post_id: int, locked: bool) -> bool:
        verb = "lock" if locked else "unlock"
        return self._send_authed("LockPost", {"post_id": post_id, "locked": locked}, f"{verb} post ID {post_id}")

    # Correlated reads

    async def get_post(self, post_id: int) -> Dict[str, Any]:
        return await self.correlator.fetch_by_id("post", post_id, lambda: self._send("GetPost", {"id": post_id}))

    async def get_comment(self, comment_id: int) -> Dict[str, Any]:
        return await self.correlator.fetch_by_id(
            "comment", comment_id, lambda: self._send("GetComment", {"id": comment_id})
        )

    async def get_parent_of_comment(self, comment: Dict[str, Any]) -> ParentResponse:
        parent_id = parent_comment_id(comment)
        if parent_id is None:
            return ParentResponse(type="post", data=await self.get_post(int(comment["post_id"])))
        return ParentResponse(type="comment", data=await self.get_comment(parent_id))

    async def is_community_mod(self, *, person_id: int, community_id: int) -> bool:
        response = await self.correlator.fetch_by_id(
            "community", community_id, lambda: self._send("GetCommunity", {"id": community_id})
        )
        moderators = response.get("moderators") or []
        return any((mod.get("moderator") or {}).get("id") == person_id for mod in moderators)

    def _criteria(self, options: Union[str, SearchCriteria, Dict[str, str]], search_type: str) -> SearchCriteria:
        if isinstance(options, SearchCriteria):
            return SearchCriteria(name=options.name, instance=options.instance, search_type=search_type)
        if isinstance(options, dict):
            return SearchCriteria(
                name=options["name"],
                instance=normalize_instance(options.get("instance") or self.connection.instance),
                search_type=search_type,
            )
        return SearchCriteria(name=str(options), instance=self.connection.instance, search_type=search_type)

    async def _resolve(self, options: Union[str, SearchCriteria, Dict[str, str]], search_type: str) -> Optional[int]:
        criteria = self._criteria(options, search_type)
        self.logger.info(
            "Resolving %s id name=%s instance=%s", search_type.lower(), criteria.name, criteria.instance
        )
        return await self.correlator.resolve_identifier(
            criteria,
            lambda: self._send(
                "Search",
                {"q": criteria.name, "type_": search_type, "listing_type": "All", "sort": "TopAll"},
            ),
        )

    async def get_community_id(self, options: Union[str, SearchCriteria, Dict[str, str]]) -> Optional[int]:
        """Community id by name; a bare string searches the bot's own instance."""
        return await self._resolve(options, SEARCH_COMMUNITIES)

    async def get_user_id(self, options: Union[str, SearchCriteria, Dict[str, str]]) -> Optional[int]:
        """User id by name; a bare string searches the bot's own instance."""
        return await self._resolve(options, SEARCH_USERS)
