import unittest

from lemmybot.runtime.categories import get_spec
from lemmybot.runtime.federation import (
    ConfigError,
    FederationFilter,
    FederationOptions,
    InstanceFederationOptions,
    build_matcher,
)


def _post(actor_id):
    return {"post": {"id": 1}, "community": {"actor_id": actor_id}}


class FederationFilterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.actor_id_of = get_spec("post").actor_id

    def test_local_means_no_client_side_filtering(self):
        fed = FederationFilter("lemmy.example", "local")
        self.assertTrue(fed.allows_everything)
        self.assertEqual(fed.listing_type, "Local")
        items = [_post("https://other.example/c/x")]
        self.assertEqual(fed.filter(items, self.actor_id_of), items)

    def test_all_means_no_filtering_and_all_listing(self):
        fed = FederationFilter("lemmy.example", "all")
        self.assertIsNone(fed.options)
        self.assertEqual(fed.listing_type, "All")

    def test_allow_list_keeps_listed_instance_and_home(self):
        fed = FederationFilter("lemmy.example", FederationOptions(allow_list=["alpha.example"]))
        self.assertEqual(fed.listing_type, "All")
        items = [
            _post("https://alpha.example/c/news"),
            _post("https://beta.example/c/news"),
            _post("https://lemmy.example/c/local"),
        ]
        kept = fed.filter(items, self.actor_id_of)
        self.assertEqual(
            [self.actor_id_of(item) for item in kept],
            ["https://alpha.example/c/news", "https://lemmy.example/c/local"],
        )

    def test_allow_list_with_communities(self):
        fed = FederationFilter(
            "lemmy.example",
            FederationOptions(
                allow_list=[InstanceFederationOptions(instance="alpha.example", communities=["news", "memes"])]
            ),
        )
        self.assertTrue(fed.is_allowed("https://alpha.example/c/news"))
        self.assertTrue(fed.is_allowed("http://alpha.example/c/MEMES"))
        self.assertFalse(fed.is_allowed("https://alpha.example/c/politics"))
        self.assertFalse(fed.is_allowed("https://alpha.example/c/newsy"))

    def test_block_list_drops_blocked_instance(self):
        fed = FederationFilter("lemmy.example", FederationOptions(block_list=["spam.example"]))
        self.assertFalse(fed.allows_everything)
        self.assertEqual(fed.listing_type, "All")
        self.assertFalse(fed.is_allowed("https://spam.example/c/deals"))
        self.assertTrue(fed.is_allowed("https://alpha.example/c/deals"))

    def test_items_without_community_are_kept(self):
        fed = FederationFilter("lemmy.example", FederationOptions(block_list=["spam.example"]))
        self.assertTrue(fed.is_allowed(None))

    def test_both_lists_is_config_error(self):
        with self.assertRaises(ConfigError):
            FederationOptions(allow_list=["a.example"], block_list=["b.example"])

    def test_dict_options_are_accepted(self):
        fed = FederationFilter("lemmy.example", {"block_list": ["spam.example"]})
        self.assertFalse(fed.is_allowed("https://spam.example/c/x"))

    def test_matchers_are_cached_until_options_change(self):
        fed = FederationFilter("lemmy.example", FederationOptions(block_list=["spam.example"]))
        first = fed.block_matcher
        self.assertIs(fed.block_matcher, first)
        fed.options = FederationOptions(block_list=["junk.example"])
        second = fed.block_matcher
        self.assertIsNot(second, first)
        self.assertTrue(fed.is_allowed("https://spam.example/c/x"))
        self.assertFalse(fed.is_allowed("https://junk.example/c/x"))


class BuildMatcherTests(unittest.TestCase):
    def test_instance_names_are_escaped(self):
        matcher = build_matcher(["a.example"])
        self.assertIsNotNone(matcher.match("https://a.example/c/x"))
        self.assertIsNone(matcher.match("https://aXexample/c/x"))

    def test_empty_list_never_matches(self):
        self.assertIsNone(build_matcher([]).match("https://a.example/c/x"))


if __name__ == "__main__":
    unittest.main()
