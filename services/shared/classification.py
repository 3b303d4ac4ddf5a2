from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import unquote_plus

from services.shared.errors import MalformedEnvelope, PipelineError, UnknownImageType, UnsupportedImageType


ACCEPTED_IMAGE_TYPES = ("jpeg", "png")
IMAGE_TYPE_ATTRIBUTE = "imageType"

_SUFFIX_RE = re.compile(r"\.([^.]*)$")


class RejectionReason(str, Enum):
    UNKNOWN_IMAGE_TYPE = "UNKNOWN_IMAGE_TYPE"
    UNSUPPORTED_IMAGE_TYPE = "UNSUPPORTED_IMAGE_TYPE"
    UNDECODABLE_KEY = "UNDECODABLE_KEY"


@dataclass(frozen=True)
class Accepted:
    file_name: str
    image_type: str


@dataclass(frozen=True)
class Rejected:
    file_name: str
    reason: RejectionReason
    image_type: str | None = None

    @property
    def detail(self) -> str:
        if self.reason is RejectionReason.UNKNOWN_IMAGE_TYPE:
            return f"Could not determine the image type of {self.file_name!r}"
        if self.reason is RejectionReason.UNDECODABLE_KEY:
            return f"Object key {self.file_name!r} is not valid percent-encoded UTF-8"
        return f"Unsupported image type: {self.image_type}"

    def to_error(self) -> PipelineError:
        if self.reason is RejectionReason.UNDECODABLE_KEY:
            return MalformedEnvelope(self.detail)
        if self.reason is RejectionReason.UNKNOWN_IMAGE_TYPE:
            return UnknownImageType(self.detail)
        return UnsupportedImageType(self.detail)


Classification = Accepted | Rejected


def decode_object_key(raw_key: str) -> str:
    """Object keys arrive percent-encoded with '+' standing for a space.

    Raises ``UnicodeDecodeError`` when the escapes are not valid UTF-8; replacing
    them would map distinct keys onto one file name.
    """
    return unquote_plus(raw_key, errors="strict")


def extract_suffix(file_name: str) -> str | None:
    match = _SUFFIX_RE.search(file_name)
    if match is None:
        return None
    return match.group(1)


def classify_object_key(raw_key: str) -> Classification:
    try:
        file_name = decode_object_key(raw_key)
    except UnicodeDecodeError:
        return Rejected(file_name=raw_key, reason=RejectionReason.UNDECODABLE_KEY)
    suffix = extract_suffix(file_name)
    if suffix is None:
        return Rejected(file_name=file_name, reason=RejectionReason.UNKNOWN_IMAGE_TYPE)
    image_type = suffix.lower()
    if image_type not in ACCEPTED_IMAGE_TYPES:
        return Rejected(
            file_name=file_name,
            reason=RejectionReason.UNSUPPORTED_IMAGE_TYPE,
            image_type=image_type,
        )
    return Accepted(file_name=file_name, image_type=image_type)


def image_type_attribute(raw_key: str) -> str:
    """Value published as the topic's imageType attribute, e.g. '.jpeg'.

    Keys without a suffix, or that do not decode, get an empty value so deny-list
    policies still see them.
    """
    try:
        suffix = extract_suffix(decode_object_key(raw_key))
    except UnicodeDecodeError:
        return ""
    if suffix is None:
        return ""
    return f".{suffix.lower()}"


def accepted_attribute_values() -> list[str]:
    return [f".{image_type}" for image_type in ACCEPTED_IMAGE_TYPES]
