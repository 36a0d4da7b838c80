"""
tests/unit/test_codec.py — Payload Codec Tests

Covers:
  - count / remaining decoding across aliases and numeric encodings
  - malformed presence payloads default to zero
  - image byte decoding: raw bytes, byte arrays, Buffer descriptors
  - MIME inference and extension mapping
  - materialize_image success and failure-as-value
  - newMessage decoding: text, legacy fields, images, drops
"""

from __future__ import annotations

import pytest

from exceptions import MalformedPayloadError, MaterializationError
from gateway.codec import (
    GENERIC_MIME,
    MaterializationFailed,
    decode_count,
    decode_image_bytes,
    decode_message,
    decode_presence,
    decode_remaining,
    extension_for_mime,
    first_success,
    infer_mime_type,
    materialize_image,
)
from gateway.protocol import MessageKind, Presence

PNG_BYTES = bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A])


# ─────────────────────────────────────────────────────────────────────────────
# Presence numbers
# ─────────────────────────────────────────────────────────────────────────────

class TestDecodeCount:
    def test_count_int(self):
        assert decode_count({"count": 3}) == 3

    def test_participant_count_alias(self):
        assert decode_count({"participantCount": 7}) == 7

    def test_float_truncates_toward_zero(self):
        assert decode_count({"count": 2.9}) == 2

    def test_count_wins_over_alias(self):
        assert decode_count({"count": 1, "participantCount": 5}) == 1

    def test_unrecognized_count_falls_through_to_alias(self):
        assert decode_count({"count": "3", "participantCount": 4}) == 4

    def test_bool_is_not_a_count(self):
        assert decode_count({"count": True}) == 0

    def test_nan_and_inf_are_ignored(self):
        assert decode_count({"count": float("nan")}) == 0
        assert decode_count({"count": float("inf")}) == 0

    def test_negative_clamped(self):
        assert decode_count({"count": -2}) == 0

    def test_missing_defaults_to_zero(self):
        assert decode_count({}) == 0


class TestDecodeRemaining:
    def test_remaining_ms_int(self):
        assert decode_remaining({"remainingMs": 5000}) == 5000

    def test_remaining_ms_float_truncated(self):
        assert decode_remaining({"remainingMs": 1500.7}) == 1500

    def test_ttl_seconds_converted(self):
        assert decode_remaining({"ttlSeconds": 10}) == 10000

    def test_ttl_seconds_float(self):
        assert decode_remaining({"ttlSeconds": 1.5}) == 1500

    def test_ttl_seconds_float_noise(self):
        assert decode_remaining({"ttlSeconds": 1.001}) == 1001

    def test_remaining_ms_preferred_over_ttl(self):
        assert decode_remaining({"remainingMs": 100, "ttlSeconds": 9}) == 100

    def test_negative_clamped(self):
        assert decode_remaining({"remainingMs": -500}) == 0
        assert decode_remaining({"ttlSeconds": -1}) == 0

    def test_both_absent(self):
        assert decode_remaining({"count": 4}) == 0

    def test_ttl_overflowing_when_scaled_defaults(self):
        assert decode_remaining({"ttlSeconds": 1e306}) == 0

    def test_ttl_overflow_falls_back_to_no_value(self):
        assert decode_presence({"count": 2, "ttlSeconds": 1e306}) == Presence(2, 0)

    def test_non_finite_remaining_defaults(self):
        assert decode_remaining({"remainingMs": float("inf")}) == 0
        assert decode_remaining({"remainingMs": float("nan")}) == 0


class TestDecodePresence:
    def test_scenario_count_and_remaining(self):
        assert decode_presence({"count": 3, "remainingMs": 5000}) == Presence(3, 5000)

    def test_scenario_aliases(self):
        assert decode_presence({"participantCount": 2.0, "ttlSeconds": 10}) == Presence(2, 10000)

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "3",
            42,
            [1, 2],
            {},
            {"count": None, "remainingMs": None},
            {"count": "many", "remainingMs": "soon"},
            {"count": [3], "ttlSeconds": {"s": 1}},
        ],
    )
    def test_malformed_defaults_to_zero(self, raw):
        assert decode_presence(raw) == Presence(0, 0)


class TestFirstSuccess:
    def test_returns_first_non_none(self):
        calls = []

        def a(_):
            calls.append("a")
            return None

        def b(_):
            calls.append("b")
            return 2

        def c(_):
            calls.append("c")
            return 3

        assert first_success((a, b, c), object(), 0) == 2
        assert calls == ["a", "b"]

    def test_default_when_all_fail(self):
        assert first_success((lambda _: None,), object(), "dflt") == "dflt"


# ─────────────────────────────────────────────────────────────────────────────
# Image bytes
# ─────────────────────────────────────────────────────────────────────────────

class TestDecodeImageBytes:
    def test_all_encodings_agree(self):
        as_list = list(PNG_BYTES)
        encodings = [
            PNG_BYTES,
            bytearray(PNG_BYTES),
            memoryview(PNG_BYTES),
            as_list,
            tuple(as_list),
            {"type": "Buffer", "data": as_list},
        ]
        decoded = [decode_image_bytes(e) for e in encodings]
        assert all(d == PNG_BYTES for d in decoded)

    def test_out_of_range_byte_rejected(self):
        assert decode_image_bytes([0, 256]) is None
        assert decode_image_bytes([-1]) is None

    def test_non_int_elements_rejected(self):
        assert decode_image_bytes([1, "2"]) is None
        assert decode_image_bytes([1.0, 2.0]) is None
        assert decode_image_bytes([True]) is None

    def test_descriptor_needs_buffer_tag(self):
        assert decode_image_bytes({"type": "Blob", "data": [1, 2]}) is None
        assert decode_image_bytes({"data": [1, 2]}) is None

    def test_descriptor_with_bad_data(self):
        assert decode_image_bytes({"type": "Buffer", "data": "abc"}) is None

    @pytest.mark.parametrize("raw", [None, "iVBORw0KGgo=", 12, 3.5, {"x": 1}])
    def test_unknown_shapes(self, raw):
        assert decode_image_bytes(raw) is None


# ─────────────────────────────────────────────────────────────────────────────
# MIME + materialization
# ─────────────────────────────────────────────────────────────────────────────

class TestMimeTypes:
    def test_declared_wins(self):
        assert infer_mime_type("photo.png", "image/heic") == "image/heic"

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("a.jpg", "image/jpeg"),
            ("a.JPEG", "image/jpeg"),
            ("a.png", "image/png"),
            ("a.gif", "image/gif"),
            ("a.webp", "image/webp"),
            ("a.tiff", GENERIC_MIME),
            ("noext", GENERIC_MIME),
            (None, GENERIC_MIME),
        ],
    )
    def test_by_extension(self, name, expected):
        assert infer_mime_type(name, "") == expected

    def test_blank_declared_ignored(self):
        assert infer_mime_type("x.gif", "   ") == "image/gif"

    def test_extension_for_mime(self):
        assert extension_for_mime("image/jpeg") == "jpg"
        assert extension_for_mime("image/png") == "png"
        assert extension_for_mime("application/pdf") == "bin"
        assert extension_for_mime(None) == "bin"


class TestMaterializeImage:
    def test_writes_file(self, tmp_path):
        result = materialize_image(PNG_BYTES, "screen shot.png", "image/png", tmp_path)
        assert not isinstance(result, MaterializationFailed)
        assert result.parent == tmp_path
        assert result.suffix == ".png"
        assert result.name.startswith("screen_shot-")
        assert result.read_bytes() == PNG_BYTES

    def test_unique_names(self, tmp_path):
        a = materialize_image(PNG_BYTES, "same.png", "image/png", tmp_path)
        b = materialize_image(PNG_BYTES, "same.png", "image/png", tmp_path)
        assert a != b
        assert len(list(tmp_path.iterdir())) == 2

    def test_extension_from_mime_not_name(self, tmp_path):
        result = materialize_image(PNG_BYTES, "pic.png", "image/jpeg", tmp_path)
        assert result.suffix == ".jpg"

    def test_creates_missing_directory(self, tmp_path):
        target = tmp_path / "nested" / "dir"
        result = materialize_image(PNG_BYTES, "x", "image/gif", target)
        assert result.parent == target

    def test_path_traversal_in_name_is_flattened(self, tmp_path):
        result = materialize_image(PNG_BYTES, "../../etc/passwd", "image/png", tmp_path)
        assert result.parent == tmp_path

    def test_failure_is_returned_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        result = materialize_image(PNG_BYTES, "x.png", "image/png", blocker)
        assert isinstance(result, MaterializationFailed)
        assert result.reason


# ─────────────────────────────────────────────────────────────────────────────
# newMessage envelopes
# ─────────────────────────────────────────────────────────────────────────────

class TestDecodeMessage:
    def test_text_message(self):
        msg = decode_message([{"from": {"name": "Ana"}, "type": "text", "content": "  hi  "}])
        assert msg.kind is MessageKind.TEXT
        assert msg.sender_name == "Ana"
        assert msg.text_content == "hi"
        assert msg.image_ref is None

    def test_legacy_message_field(self):
        msg = decode_message([{"message": "old school"}])
        assert msg.text_content == "old school"
        assert msg.sender_name == "Unknown"

    def test_sender_as_string(self):
        assert decode_message([{"from": "bo", "content": "x"}]).sender_name == "bo"

    def test_sender_name_field(self):
        assert decode_message([{"senderName": "cy", "content": "x"}]).sender_name == "cy"

    def test_blank_text_dropped(self):
        with pytest.raises(MalformedPayloadError):
            decode_message([{"type": "text", "content": "   \n"}])

    def test_non_object_dropped(self):
        with pytest.raises(MalformedPayloadError):
            decode_message(["just a string"])
        with pytest.raises(MalformedPayloadError):
            decode_message([])

    def test_unknown_type_dropped(self):
        with pytest.raises(MalformedPayloadError):
            decode_message([{"type": "video", "content": "x"}])

    def test_image_url(self):
        msg = decode_message([{
            "from": {"name": "Ana"},
            "type": "image",
            "imageUrl": "https://cdn.example.com/a.png",
            "content": "look",
        }])
        assert msg.kind is MessageKind.IMAGE
        assert msg.image_ref == "https://cdn.example.com/a.png"
        assert msg.text_content == "look"

    def test_image_buffer_descriptor_materialized(self, tmp_path):
        msg = decode_message(
            [{
                "from": {"name": "Ana"},
                "type": "image",
                "imageData": {"type": "Buffer", "data": list(PNG_BYTES)},
                "imageName": "shot.png",
            }],
            image_dir=tmp_path,
        )
        assert msg.kind is MessageKind.IMAGE
        assert msg.text_content is None
        saved = tmp_path / msg.image_ref.split("/")[-1]
        assert saved.read_bytes() == PNG_BYTES
        assert saved.suffix == ".png"

    def test_image_binary_attachment(self, tmp_path):
        msg = decode_message(
            [{"type": "image", "imageType": "image/webp"}, PNG_BYTES],
            image_dir=tmp_path,
        )
        assert msg.image_ref.endswith(".webp")

    def test_type_inferred_from_image_fields(self, tmp_path):
        msg = decode_message([{"imageData": list(PNG_BYTES)}], image_dir=tmp_path)
        assert msg.kind is MessageKind.IMAGE

    def test_image_without_bytes_dropped(self):
        with pytest.raises(MalformedPayloadError):
            decode_message([{"type": "image", "imageData": "garbage", "content": "cap"}])

    def test_materialization_failure_degrades_to_text(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        msg = decode_message(
            [{"type": "image", "imageData": list(PNG_BYTES), "content": "see this"}],
            image_dir=blocker,
        )
        assert msg.kind is MessageKind.TEXT
        assert msg.text_content.startswith("see this\n[image could not be saved")
        assert msg.image_ref is None

    def test_materialization_failure_without_text_dropped(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(MaterializationError):
            decode_message([{"type": "image", "imageData": list(PNG_BYTES)}], image_dir=blocker)
