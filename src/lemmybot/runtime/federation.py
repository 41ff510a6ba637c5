from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Union

from ..lemmy_client import normalize_instance


class ConfigError(ValueError):
    pass


@dataclass
class InstanceFederationOptions:
    instance: str
    # Community names as they appear in the actor id, e.g. "asklemmy" for
    # https://lemmy.ml/c/asklemmy
    communities: List[str] = field(default_factory=list)


InstanceList = List[Union[str, InstanceFederationOptions]]


@dataclass
class FederationOptions:
    allow_list: InstanceList = field(default_factory=list)
    block_list: InstanceList = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.allow_list and self.block_list:
            raise ConfigError("Federation options may set an allow list or a block list, not both.")
        if not self.allow_list and not self.block_list:
            raise ConfigError("Federation options must set either an allow list or a block list.")


def _instance_name(entry: Union[str, InstanceFederationOptions]) -> str:
    if isinstance(entry, InstanceFederationOptions):
        return normalize_instance(entry.instance)
    return normalize_instance(entry)


def _actor_id_pattern(instance: str, community: str) -> str:
    return f"https?://{instance}/c/({community})"


def build_matcher(instances: Iterable[Union[str, InstanceFederationOptions]]) -> Pattern[str]:
    """Compile one pattern matching community actor ids from the given instances.

    Bare instance entries match every community on that instance; entries with
    communities only match those community names.
    """
    bare: List[str] = []
    restricted: List[InstanceFederationOptions] = []
    for entry in instances:
        if isinstance(entry, InstanceFederationOptions) and entry.communities:
            restricted.append(entry)
        else:
            bare.append(re.escape(_instance_name(entry)))

    parts: List[str] = []
    if bare:
        parts.append(f"^{_actor_id_pattern('(' + '|'.join(bare) + ')', '.*')}$")
    if restricted:
        parts.append(
            "("
            + "|".join(
                f"^{_actor_id_pattern(re.escape(_instance_name(r)), '|'.join(re.escape(c) for c in r.communities))}$"
                for r in restricted
            )
            + ")"
        )
    if not parts:
        # Nothing listed: a pattern that never matches.
        return re.compile(r"(?!)")
    return re.compile("|".join(parts), re.IGNORECASE)


def parse_federation(
    federation: Union[str, FederationOptions, Dict[str, Any], None],
    home_instance: str,
) -> Optional[FederationOptions]:
    """Normalize "local" / "all" / options into FederationOptions (None = no filtering)."""
    home = normalize_instance(home_instance)
    if federation is None or federation == "all":
        return None
    if federation == "local":
        return FederationOptions(allow_list=[home])
    if isinstance(federation, dict):
        federation = FederationOptions(
            allow_list=list(federation.get("allow_list") or []),
            block_list=list(federation.get("block_list") or []),
        )
    if not isinstance(federation, FederationOptions):
        raise ConfigError(f"Unsupported federation option {federation!r}")
    if federation.allow_list:
        names = {_instance_name(entry) for entry in federation.allow_list}
        if home not in names:
            return FederationOptions(allow_list=[*federation.allow_list, home])
    return federation


class FederationFilter:
    """Allow/block filtering of fetched items by their community's instance.

    Matchers are compiled lazily and cached on the instance; assigning new
    options drops the cache.
    """

    def __init__(self, home_instance: str, federation: Union[str, FederationOptions, None] = "local"):
        self.home_instance = normalize_instance(home_instance)
        self._options: Optional[FederationOptions] = None
        self._allow_matcher: Optional[Pattern[str]] = None
        self._block_matcher: Optional[Pattern[str]] = None
        self.options = federation

    @property
    def options(self) -> Optional[FederationOptions]:
        return self._options

    @options.setter
    def options(self, federation: Union[str, FederationOptions, None]) -> None:
        self._options = parse_federation(federation, self.home_instance)
        self._allow_matcher = None
        self._block_matcher = None

    @property
    def allows_everything(self) -> bool:
        options = self._options
        if options is None:
            return True
        if options.block_list:
            return False
        names = {_instance_name(entry) for entry in options.allow_list}
        only_home = names == {self.home_instance} and all(
            not isinstance(entry, InstanceFederationOptions) or not entry.communities
            for entry in options.allow_list
        )
        return only_home

    @property
    def listing_type(self) -> str:
        options = self._options
        if options is not None and options.allow_list and self.allows_everything:
            return "Local"
        return "All"

    @property
    def allow_matcher(self) -> Optional[Pattern[str]]:
        if self._options is None or not self._options.allow_list:
            return None
        if self._allow_matcher is None:
            self._allow_matcher = build_matcher(self._options.allow_list)
        return self._allow_matcher

    @property
    def block_matcher(self) -> Optional[Pattern[str]]:
        if self._options is None or not self._options.block_list:
            return None
        if self._block_matcher is None:
            self._block_matcher = build_matcher(self._options.block_list)
        return self._block_matcher

    def is_allowed(self, actor_id: Optional[str]) -> bool:
        if not actor_id:
            return True
        if not self.allows_everything:
            allow = self.allow_matcher
            if allow is not None and not allow.match(actor_id):
                return False
        block = self.block_matcher
        if block is not None and block.match(actor_id):
            return False
        return True

    def filter(self, items: List[Dict[str, Any]], actor_id_of) -> List[Dict[str, Any]]:
        """Keep the items whose origin passes the allow list, then the block list.

        actor_id_of returns the item's community actor id, or None for items
        that carry no community (those are always kept).
        """
        if self.allows_everything:
            return list(items)
        return [item for item in items if self.is_allowed(actor_id_of(item))]
