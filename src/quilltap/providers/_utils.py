"""Shared pure helpers for adapter implementations.

Nothing here holds state: adapters share formatting rules by calling these
functions, not by inheriting from a common base.
"""

from __future__ import annotations

import base64
import binascii
import inspect
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from quilltap._utils import get_field
from quilltap.providers.models import AttachmentFailure, AttachmentResults

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from quilltap.providers.models import FileAttachment, Message

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TOP_P = 1.0
#: Used when a vendor forbids temperature and top_p together and neither is set.
EXCLUSIVE_SAMPLING_DEFAULT_TEMPERATURE = 1.0

TEXT_MIME_TYPES: frozenset[str] = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/csv",
        "text/html",
        "application/json",
    }
)


def is_text_mime(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES


def split_system(messages: Iterable[Message]) -> tuple[str | None, list[Message]]:
    """Separate the system prompt from the conversation turns.

    Only the first system message is honoured; later ones are dropped with a
    warning since no vendor accepts more than one out-of-band prompt.
    """
    system: str | None = None
    rest: list[Message] = []
    for message in messages:
        if message.role == "system":
            if system is None:
                system = message.content
            else:
                logger.warning("Ignoring additional system message")
            continue
        rest.append(message)
    return system, rest


def collect_attachment_parts(
    message: Message,
    *,
    vendor: str,
    supported_mime_types: frozenset[str],
    encode: Callable[[FileAttachment], T],
) -> tuple[list[T], AttachmentResults]:
    """Encode each attachment of *message*, collecting partial failures.

    ``encode`` may raise ``ValueError`` to reject a single attachment; the
    rest of the message is still sent.
    """
    parts: list[T] = []
    results = AttachmentResults()
    for attachment in message.attachments:
        if attachment.mime_type not in supported_mime_types:
            supported = ", ".join(sorted(supported_mime_types)) or "none"
            results.failed.append(
                AttachmentFailure(
                    id=attachment.id,
                    error=(
                        f"Unsupported file type: {attachment.mime_type}. "
                        f"{vendor} supports: {supported}"
                    ),
                )
            )
            continue
        if not attachment.data:
            results.failed.append(
                AttachmentFailure(id=attachment.id, error="File data not loaded")
            )
            continue
        try:
            parts.append(encode(attachment))
        except ValueError as e:
            results.failed.append(AttachmentFailure(id=attachment.id, error=str(e)))
            continue
        results.sent.append(attachment.id)

    if results.failed:
        logger.warning(
            "%s dropped %d attachment(s): %s",
            vendor,
            len(results.failed),
            ", ".join(f.id for f in results.failed),
        )
    return parts, results


def reject_attachments(message: Message, reason: str) -> AttachmentResults:
    """Mark every attachment of *message* as failed with *reason*."""
    return AttachmentResults(
        failed=[AttachmentFailure(id=a.id, error=reason) for a in message.attachments]
    )


def decode_text_attachment(attachment: FileAttachment) -> str:
    """Decode a text-typed attachment into an inline ``[File: name]`` block."""
    if not is_text_mime(attachment.mime_type):
        raise ValueError(
            f"Binary attachment {attachment.filename!r} ({attachment.mime_type}) "
            "cannot be sent inline"
        )
    try:
        text = base64.b64decode(attachment.data or "", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Could not decode {attachment.filename!r}: {e}") from e
    return f"[File: {attachment.filename}]\n{text}"


def data_url(attachment: FileAttachment) -> str:
    return f"data:{attachment.mime_type};base64,{attachment.data}"


def resolve_exclusive_sampling(
    temperature: float | None, top_p: float | None
) -> dict[str, float]:
    """Pick one of temperature/top_p for vendors that reject both at once."""
    if temperature is not None:
        return {"temperature": temperature}
    if top_p is not None:
        return {"top_p": top_p}
    return {"temperature": EXCLUSIVE_SAMPLING_DEFAULT_TEMPERATURE}


async def aclose_resource(resource: Any) -> None:
    """Close an SDK client, stream, or async generator, whichever API it exposes."""
    closer = getattr(resource, "aclose", None) or getattr(resource, "close", None)
    if closer is None:
        return
    result = closer()
    if inspect.isawaitable(result):
        await result
