import unittest

from url_rules import (
    DENYLIST_TOKENS,
    InvalidPageUrl,
    is_candidate,
    normalize_image_url,
    normalize_page_url,
    upgrade_resolution,
)

BASE = "https://shop.example.com/item/42"


class TestNormalizeImageUrl(unittest.TestCase):
    def test_empty_input_rejected(self) -> None:
        self.assertIsNone(normalize_image_url("", BASE))
        self.assertIsNone(normalize_image_url("   ", BASE))
        self.assertIsNone(normalize_image_url(None, BASE))

    def test_protocol_relative_gets_https(self) -> None:
        self.assertEqual(
            normalize_image_url("//cdn.example.com/p.jpg", BASE),
            "https://cdn.example.com/p.jpg",
        )

    def test_root_relative_uses_origin(self) -> None:
        self.assertEqual(
            normalize_image_url("/media/p.jpg", BASE),
            "https://shop.example.com/media/p.jpg",
        )

    def test_bare_relative_joined_to_origin_not_page_path(self) -> None:
        self.assertEqual(
            normalize_image_url("media/p.jpg", BASE),
            "https://shop.example.com/media/p.jpg",
        )

    def test_absolute_and_data_pass_through(self) -> None:
        for url in ("http://a.example.com/x.png", "https://a.example.com/x.png", "data:image/png;base64,AAAA"):
            self.assertEqual(normalize_image_url(url, BASE), url)

    def test_malformed_base_drops_relative_candidate_only(self) -> None:
        self.assertIsNone(normalize_image_url("/p.jpg", "not a url"))
        self.assertEqual(
            normalize_image_url("https://cdn.example.com/p.jpg", "not a url"),
            "https://cdn.example.com/p.jpg",
        )

    def test_other_schemes_rejected(self) -> None:
        self.assertIsNone(normalize_image_url("javascript:void(0)", BASE))
        self.assertIsNone(normalize_image_url("blob:https://x/1", BASE))

    def test_output_is_always_absolute_or_none(self) -> None:
        samples = ["p.jpg", "./p.jpg", "../p.jpg", "/p.jpg", "//h/p.jpg", "?x=1", "#frag", "https://h/p.jpg"]
        for raw in samples:
            out = normalize_image_url(raw, BASE)
            if out is not None:
                self.assertRegex(out, r"^(https?://[^/]+|data:)", msg=raw)


class TestNormalizePageUrl(unittest.TestCase):
    def test_default_scheme_added(self) -> None:
        self.assertEqual(normalize_page_url("shop.example.com/item"), "https://shop.example.com/item")

    def test_keeps_existing_scheme(self) -> None:
        self.assertEqual(normalize_page_url(" http://shop.example.com/ "), "http://shop.example.com/")

    def test_missing_or_unusable_raises(self) -> None:
        for raw in (None, "", "ftp://files.example.com/x", "https://"):
            with self.assertRaises(InvalidPageUrl, msg=repr(raw)):
                normalize_page_url(raw)


class TestCandidateFilter(unittest.TestCase):
    def test_every_token_rejected_in_any_case(self) -> None:
        for token in DENYLIST_TOKENS:
            self.assertFalse(is_candidate(f"https://cdn.example.com/{token}/p.jpg"), token)
            self.assertFalse(is_candidate(f"https://cdn.example.com/{token.upper()}/p.jpg"), token)

    def test_clean_url_passes(self) -> None:
        self.assertTrue(is_candidate("https://cdn.example.com/products/red-dress.jpg"))

    def test_empty_is_not_a_candidate(self) -> None:
        self.assertFalse(is_candidate(""))
        self.assertFalse(is_candidate(None))

    def test_short_data_uri_rejected_long_kept(self) -> None:
        prefix = "data:image/png;base64,"
        short = prefix + "A" * (40 - len(prefix))
        long = prefix + "A" * (600 - len(prefix))
        self.assertEqual(len(short), 40)
        self.assertEqual(len(long), 600)
        self.assertFalse(is_candidate(short))
        self.assertTrue(is_candidate(long))


class TestUpgradeResolution(unittest.TestCase):
    def test_size_query_stripped(self) -> None:
        self.assertEqual(upgrade_resolution("https://cdn.example.com/p.jpg?w=200"), "https://cdn.example.com/p.jpg")
        self.assertEqual(
            upgrade_resolution("https://cdn.example.com/p.jpg?width=200&height=300&v=9"),
            "https://cdn.example.com/p.jpg",
        )

    def test_filename_infixes_removed(self) -> None:
        self.assertEqual(upgrade_resolution("https://cdn.example.com/p_300x300.jpg"), "https://cdn.example.com/p.jpg")
        self.assertEqual(upgrade_resolution("https://cdn.example.com/p-1280x1600.jpg"), "https://cdn.example.com/p.jpg")
        self.assertEqual(upgrade_resolution("https://cdn.example.com/400x400/p.jpg"), "https://cdn.example.com/p.jpg")

    def test_zara_width_tier_and_timestamp(self) -> None:
        self.assertEqual(
            upgrade_resolution("https://www.zara.com/assets/w/563/photo.jpg?ts=1700000000"),
            "https://www.zara.com/assets/w/1920/photo.jpg",
        )

    def test_hm_only_drops_query(self) -> None:
        self.assertEqual(
            upgrade_resolution("https://image.hm.com/assets/p_100x100.jpg?imwidth=564"),
            "https://image.hm.com/assets/p_100x100.jpg",
        )

    def test_data_uri_untouched(self) -> None:
        uri = "data:image/png;base64,iVBO/12x34/AAAA"
        self.assertEqual(upgrade_resolution(uri), uri)

    def test_idempotent(self) -> None:
        samples = [
            "https://cdn.example.com/p_1x2_300x400.jpg?w=1",
            "https://cdn.example.com/100x100/200x200/p.jpg",
            "https://cdn.example.com/p-10x10-20x20.png#zoom",
            "https://www.zara.com/assets/w/563/photo.jpg?ts=1",
            "https://image.hm.com/p.jpg?x=1",
            "https://cdn.example.com",
        ]
        for url in samples:
            once = upgrade_resolution(url)
            self.assertEqual(upgrade_resolution(once), once, url)
            self.assertTrue(once)


if __name__ == "__main__":
    unittest.main()
