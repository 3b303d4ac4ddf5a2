import pytest

from services.shared.classification import (
    Accepted,
    Rejected,
    RejectionReason,
    accepted_attribute_values,
    classify_object_key,
    decode_object_key,
    image_type_attribute,
)
from services.shared.errors import MalformedEnvelope, UnknownImageType, UnsupportedImageType


def test_percent_and_plus_encodings_decode_to_the_same_name() -> None:
    assert decode_object_key("a%20b.png") == "a b.png"
    assert decode_object_key("a+b.png") == "a b.png"


def test_encoded_plus_sign_survives_decoding() -> None:
    assert decode_object_key("a%2Bb.png") == "a+b.png"


def test_decode_handles_unicode_keys() -> None:
    assert decode_object_key("caf%C3%A9.jpeg") == "café.jpeg"


@pytest.mark.parametrize("key", ["cat.jpeg", "CAT.JPEG", "dir/photo.Png", "space+name.png"])
def test_accepted_image_types_are_case_insensitive(key: str) -> None:
    outcome = classify_object_key(key)
    assert isinstance(outcome, Accepted)
    assert outcome.image_type in {"jpeg", "png"}


def test_accepted_outcome_carries_decoded_file_name() -> None:
    assert classify_object_key("space+name.png") == Accepted(file_name="space name.png", image_type="png")


def test_key_without_suffix_is_unknown_type() -> None:
    outcome = classify_object_key("noext")
    assert isinstance(outcome, Rejected)
    assert outcome.reason is RejectionReason.UNKNOWN_IMAGE_TYPE
    assert isinstance(outcome.to_error(), UnknownImageType)


@pytest.mark.parametrize("key, image_type", [("doc.pdf", "pdf"), ("cat.jpg", "jpg"), ("trailing.", "")])
def test_other_suffixes_are_unsupported(key: str, image_type: str) -> None:
    outcome = classify_object_key(key)
    assert isinstance(outcome, Rejected)
    assert outcome.reason is RejectionReason.UNSUPPORTED_IMAGE_TYPE
    assert outcome.image_type == image_type
    assert isinstance(outcome.to_error(), UnsupportedImageType)


def test_only_last_suffix_counts() -> None:
    assert isinstance(classify_object_key("archive.png.zip"), Rejected)
    assert isinstance(classify_object_key("archive.zip.png"), Accepted)


def test_image_type_attribute_values() -> None:
    assert image_type_attribute("cat.JPEG") == ".jpeg"
    assert image_type_attribute("doc.pdf") == ".pdf"
    assert image_type_attribute("noext") == ""
    assert accepted_attribute_values() == [".jpeg", ".png"]


def test_invalid_utf8_escapes_are_rejected_not_merged() -> None:
    first = classify_object_key("a%FF.png")
    second = classify_object_key("a%FE.png")

    assert first == Rejected(file_name="a%FF.png", reason=RejectionReason.UNDECODABLE_KEY)
    assert second.file_name == "a%FE.png"
    assert isinstance(first.to_error(), MalformedEnvelope)
    assert "not valid percent-encoded UTF-8" in first.detail
    assert image_type_attribute("a%FF.png") == ""
    with pytest.raises(UnicodeDecodeError):
        decode_object_key("a%FF.png")
