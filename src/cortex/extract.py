"""Text extraction from watched files.

PDF text comes from pypdf page by page; every other file is decoded as UTF-8
with replacement characters for undecodable bytes. Files with a NUL byte
near the start are treated as binary and yield no text.
"""

from __future__ import annotations

from pathlib import Path

import pypdf

from cortex.errors import IOUnavailable

PDF_EXTENSIONS = frozenset({".pdf"})

# A NUL byte within this prefix marks a file as binary.
BINARY_SNIFF_BYTES = 8192


def extract_text(path: str | Path) -> str:
    """Return the text content of *path*.

    Raises:
        IOUnavailable: If the file vanished or cannot be read.
    """
    p = Path(path)
    try:
        if p.suffix.lower() in PDF_EXTENSIONS:
            return _extract_pdf(p)
        data = p.read_bytes()
    except (FileNotFoundError, IsADirectoryError, PermissionError) as exc:
        raise IOUnavailable(str(p), str(exc)) from exc
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        # Binary content (images, archives): nothing to analyse.
        return ""
    return data.decode("utf-8", errors="replace")


def _extract_pdf(path: Path) -> str:
    """Extract all page text from the PDF at *path*; image-only pages are skipped."""
    reader = pypdf.PdfReader(path)
    parts: list[str] = []
    for page in reader.pages:
        page_text = page.extract_text() or ""
        stripped = page_text.strip()
        if stripped:
            parts.append(stripped)
    return "\n\n".join(parts)
