from __future__ import annotations
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError
from starlette.concurrency import run_in_threadpool

from .models import DEFAULT_SECTIONS
from .settings import settings

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30.0

# Keywords that any real worksheet mentions at least once
_SECTION_KEYWORDS = ("aim", "objective", "code", "output", "problem", "result")

# Canonical section -> heading patterns, in document order
_SECTION_PATTERNS = [
	("Aim", [r"aim\s*:?", r"purpose\s*:?", r"overview\s*:?"]),
	("Problem Statement", [r"problem\s*statement\s*:?", r"problem\s*:?", r"question\s*:?"]),
	("Dataset", [r"dataset\s*:?", r"data\s*set\s*:?", r"data\s*:?"]),
	("Objective", [r"objectives?\s*:?", r"goals?\s*:?"]),
	("Code", [r"code\s*:?", r"program\s*:?", r"implementation\s*:?", r"algorithm\s*:?"]),
	("Output", [r"output\s*:?", r"results?\s*:?", r"execution\s*:?"]),
	("Learning Outcome", [r"learning\s*outcomes?\s*:?", r"conclusion\s*:?", r"learnings?\s*:?"]),
]
_COMPILED_PATTERNS = [(name, [re.compile(p, re.IGNORECASE) for p in patterns]) for name, patterns in _SECTION_PATTERNS]


class PdfExtractionError(Exception):
	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.status_code = status_code


@dataclass
class ExtractedPdf:
	text: str
	pages: int
	info: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
	is_valid: bool
	issues: List[str]


def extract_text(pdf_bytes: bytes) -> ExtractedPdf:
	try:
		reader = PdfReader(io.BytesIO(pdf_bytes))
		pages = [page.extract_text() or "" for page in reader.pages]
		info = {k.lstrip("/"): str(v) for k, v in (reader.metadata or {}).items()}
	except (PyPdfError, ValueError, OSError) as err:
		logger.error("PDF extraction error: %s", err)
		raise PdfExtractionError("Failed to extract text from PDF. File may be corrupted or scanned.") from err
	return ExtractedPdf(text="\n".join(pages), pages=len(pages), info=info)


async def download_pdf(url: str) -> bytes:
	limit = settings.max_download_bytes
	logger.info("Downloading PDF from %s", url)
	try:
		async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client:
			async with client.stream("GET", url) as r:
				r.raise_for_status()
				buf = bytearray()
				async for chunk in r.aiter_bytes():
					buf.extend(chunk)
					if len(buf) > limit:
						raise PdfExtractionError(f"PDF exceeds the {limit // (1024 * 1024)}MB download limit")
	except httpx.HTTPStatusError as err:
		status = err.response.status_code
		logger.error("PDF download failed: url=%s status=%s", url, status)
		raise PdfExtractionError(
			f"Failed to download or extract PDF from URL: HTTP {status}",
			status_code=status,
		) from err
	except httpx.RequestError as err:
		logger.error("PDF download failed: url=%s error=%s", url, err)
		raise PdfExtractionError(f"Failed to download or extract PDF from URL: {err}") from err
	logger.info("PDF downloaded, size: %d bytes", len(buf))
	return bytes(buf)


async def extract_text_from_url(url: str) -> ExtractedPdf:
	return await run_in_threadpool(extract_text, await download_pdf(url))


def validate_structure(extracted: ExtractedPdf) -> ValidationResult:
	text = extracted.text or ""
	issues: List[str] = []
	if len(text.strip()) < 100:
		issues.append("PDF appears to be empty or scanned (no extractable text)")
	if len(text) < 200:
		issues.append("PDF content is too short to be a valid worksheet")
	lowered = text.lower()
	if not any(k in lowered for k in _SECTION_KEYWORDS):
		issues.append("PDF does not appear to contain standard worksheet sections")
	return ValidationResult(is_valid=not issues, issues=issues)


def detect_sections(text: str) -> List[str]:
	detected = [name for name, patterns in _COMPILED_PATTERNS if any(p.search(text or "") for p in patterns)]
	return detected or list(DEFAULT_SECTIONS)
