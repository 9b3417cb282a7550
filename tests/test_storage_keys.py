"""Unit tests for storage key derivation."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from event_backup.schemas.alarm import Trigger
from event_backup.services import storage_keys


def make_trigger(device="AABBCCDDEEFF", event_id="evt123"):
    return Trigger(key="motion", device=device, eventId=event_id)


class TestDeriveKeys:
    def test_reference_event(self):
        event_key, video_key = storage_keys.derive_keys(make_trigger(), 1700000000000, "UTC")
        assert event_key == "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.json"
        assert video_key == "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.mp4"

    def test_keys_differ_only_in_extension(self):
        event_key, video_key = storage_keys.derive_keys(make_trigger(), 1700000000000, "UTC")
        assert event_key[:-5] == video_key[:-4]

    def test_colons_stripped_from_device(self):
        event_key, _ = storage_keys.derive_keys(make_trigger("AA:BB:CC:DD:EE:FF"), 1700000000000, "UTC")
        assert ":" not in event_key
        assert "_AABBCCDDEEFF_" in event_key

    def test_date_folder_follows_timezone(self):
        # 2023-11-14T22:13:20Z is already the 15th in Tokyo
        assert storage_keys.date_folder(1700000000000, "UTC") == "2023-11-14"
        assert storage_keys.date_folder(1700000000000, "Asia/Tokyo") == "2023-11-15"

    def test_unknown_timezone_falls_back_to_utc(self):
        assert storage_keys.date_folder(1700000000000, "Not/AZone") == "2023-11-14"

    def test_deterministic(self):
        assert storage_keys.derive_keys(make_trigger(), 1700000000000, "UTC") == \
            storage_keys.derive_keys(make_trigger(), 1700000000000, "UTC")


class TestKeyHelpers:
    def test_extension_swaps(self):
        video = "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.mp4"
        assert storage_keys.event_key_for(video) == "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.json"
        assert storage_keys.video_key_for(storage_keys.event_key_for(video)) == video
        assert storage_keys.thumbnail_key(video).endswith("_1700000000000.jpg")

    def test_screenshot_key(self):
        key = storage_keys.screenshot_key("2023-11-14/evt123_AABBCCDDEEFF_1700000000000", "login")
        assert key == "screenshots/2023-11-14/evt123_AABBCCDDEEFF_1700000000000_login-screenshot.png"

    def test_extract_timestamp(self):
        assert storage_keys.extract_timestamp("2023-11-14/evt123_AABB_1700000000000.mp4") == 1700000000000
        assert storage_keys.extract_timestamp("metadata/cameras.json") is None
        assert storage_keys.extract_timestamp(None) is None

    def test_event_search_prefix(self):
        assert storage_keys.event_search_prefix("2023-11-14", "evt123") == "2023-11-14/evt123_"

    def test_basename(self):
        assert storage_keys.basename("2023-11-14/evt123_AABB_1.json") == "evt123_AABB_1.json"
