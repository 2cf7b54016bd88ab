"""Source: document references and their ingestion into content blocks."""

from __future__ import annotations

import base64
from collections.abc import Callable  # noqa: TC003 - used at runtime in dataclass
from dataclasses import dataclass
import mimetypes
from pathlib import Path
import re
from typing import Any, Literal

from wireflow.errors import SourceError

SourceKind = Literal["text", "pdf", "image"]

_IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/gif", "image/webp"})
_PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True, slots=True)
class Source:
    """A structured reference to one document."""

    kind: SourceKind
    identifier: str
    mime_type: str
    size_bytes: int
    content_loader: Callable[[], bytes]

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        missing: type[SourceError] = SourceError,
    ) -> Source:
        """Create a Source from a local file.

        Args:
            path: Path to the file.
            missing: Error class raised when the file does not exist, so
                callers can distinguish context from input documents.
        """
        p = Path(path)
        if not p.is_file():
            raise missing(f"File not found: {p}")

        mime_type = mimetypes.guess_type(str(p))[0] or "text/plain"
        kind = detect_kind(mime_type)

        def loader() -> bytes:
            return p.read_bytes()

        return cls(
            kind=kind,
            identifier=str(p),
            mime_type=mime_type,
            size_bytes=p.stat().st_size,
            content_loader=loader,
        )

    @property
    def name(self) -> str:
        return Path(self.identifier).name

    def text(self) -> str:
        """Decode the content as UTF-8 (undecodable bytes are replaced)."""
        return self.content_loader().decode("utf-8", errors="replace")

    def to_block(self, *, citations: bool = False) -> dict[str, Any]:
        """Return the Messages API content block for a PDF or image source.

        Text sources are aggregated by the caller (see ``wrap_document``) and
        are not converted here.
        """
        if self.kind == "text":
            raise SourceError(
                f"Text source {self.identifier} has no binary block form",
                hint="Aggregate text sources with wrap_document().",
            )
        data = base64.standard_b64encode(self.content_loader()).decode("ascii")
        if self.kind == "image":
            return {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": self.mime_type,
                    "data": data,
                },
            }
        block: dict[str, Any] = {
            "type": "document",
            "source": {"type": "base64", "media_type": _PDF_MIME_TYPE, "data": data},
            "title": self.name,
        }
        if citations:
            block["citations"] = {"enabled": True}
        return block


def detect_kind(mime_type: str) -> SourceKind:
    """Map a MIME type to the block kind used for ordering and caching."""
    if mime_type == _PDF_MIME_TYPE:
        return "pdf"
    if mime_type in _IMAGE_MIME_TYPES:
        return "image"
    return "text"


def sanitize(filename: str) -> str:
    """Turn a file name into an XML-like tag identifier.

    ``"My Notes (v2).md"`` becomes ``"my-notes-v2"``.
    """
    name = Path(filename).name
    stem = name.rsplit(".", 1)[0] if "." in name[1:] else name
    tag = re.sub(r"\s+", "-", stem.lower())
    tag = re.sub(r"[^a-z0-9.-]", "", tag)
    if re.match(r"^[0-9.-]", tag):
        tag = "_" + tag
    tag = re.sub(r"-{2,}", "-", tag)
    return tag.strip("-")


def wrap_document(name: str, text: str) -> str:
    """Encapsulate document text in tags derived from its file name."""
    tag = sanitize(name)
    body = text if text.endswith("\n") or not text else text + "\n"
    return f"<{tag}>\n{body}</{tag}>\n"
