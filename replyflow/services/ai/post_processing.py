"""Inline tags the model emits, and turning raw output into clean prose.

Tag grammar:
  [PRODUCT_IMAGE: <url>]                      one per recommended image
  [BOOK_APPOINTMENT: date=YYYY-MM-DD, time=HH:MM, name=.., phone=.., email=..]

Tags are case-insensitive and always stripped from the text the
customer sees.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from replyflow.services.ai.response import AppointmentRequest

logger = logging.getLogger("ai.post_processing")

PRODUCT_IMAGE_RE = re.compile(r"\[PRODUCT_IMAGE:\s*([^\]]+)\]", re.IGNORECASE)
_PRODUCT_IMAGE_STRIP_RE = re.compile(r"\[PRODUCT_IMAGE:\s*[^\]]+\]\s*", re.IGNORECASE)
BOOK_APPOINTMENT_RE = re.compile(r"\[BOOK_APPOINTMENT:\s*([^\]]+)\]", re.IGNORECASE)
_BOOK_APPOINTMENT_STRIP_RE = re.compile(r"\[BOOK_APPOINTMENT:\s*[^\]]+\]\s*", re.IGNORECASE)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

MAX_EXTRACTED_IMAGES = 10


def is_valid_url(value: str) -> bool:
    if not value or any(ch.isspace() for ch in value):
        return False
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def extract_product_images(content: str, limit: int = MAX_EXTRACTED_IMAGES) -> list[str]:
    """Image URLs in order of appearance. Duplicates are kept."""
    images = []
    for raw in PRODUCT_IMAGE_RE.findall(content):
        url = raw.strip()
        if is_valid_url(url):
            images.append(url)
        else:
            logger.debug("Dropping malformed product image URL %r", url)
    return images[:limit]


def _tidy(text: str) -> str:
    return _EXCESS_NEWLINES_RE.sub("\n\n", text).strip()


def remove_product_image_tags(content: str) -> str:
    return _tidy(_PRODUCT_IMAGE_STRIP_RE.sub("", content))


def extract_appointment_request(content: str) -> AppointmentRequest | None:
    """First BOOK_APPOINTMENT tag, if it carries both a date and a time."""
    match = BOOK_APPOINTMENT_RE.search(content)
    if not match:
        return None

    data: dict[str, str] = {}
    for part in match.group(1).split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        data[key.strip().lower()] = value.strip()

    if not data.get("date") or not data.get("time"):
        logger.warning("BOOK_APPOINTMENT tag without date or time: %r", match.group(1))
        return None

    logger.info("📅 BOOK_APPOINTMENT tag found: %s", data)
    return AppointmentRequest(
        date=data.pop("date"),
        time=data.pop("time"),
        name=data.pop("name", None) or None,
        phone=data.pop("phone", None) or None,
        email=data.pop("email", None) or None,
        extra=data,
    )


def remove_appointment_tags(content: str) -> str:
    return _tidy(_BOOK_APPOINTMENT_STRIP_RE.sub("", content))


@dataclass
class ProcessedOutput:
    text: str
    images: list[str]
    appointment_request: AppointmentRequest | None


def process_output(content: str, max_images: int = MAX_EXTRACTED_IMAGES) -> ProcessedOutput:
    """Split raw model output into clean text, images to send and a booking request."""
    images = extract_product_images(content, max_images)
    appointment = extract_appointment_request(content)
    text = remove_appointment_tags(remove_product_image_tags(content))
    return ProcessedOutput(text=text, images=images, appointment_request=appointment)
