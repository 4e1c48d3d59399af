from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from .html_blocks import Block, Run, parse_blocks, parse_inline
from .models import User, Worksheet

logger = logging.getLogger(__name__)

# Alternate names the frontend uses when tagging images
_SECTION_ALIASES = {
	"output": {"output", "result"},
	"aim": {"aim", "overview"},
}


@dataclass
class DocSection:
	key: str
	heading: str
	blocks: List[Block] = field(default_factory=list)
	items: List[List[Run]] = field(default_factory=list)
	code_source: str = ""
	explanation: List[Block] = field(default_factory=list)
	images: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class WorksheetDocument:
	topic: str
	experiment_number: str
	header_image_url: Optional[str]
	details: List[Tuple[str, str]]
	title: Optional[str]
	sections: List[DocSection]

	def image_urls(self) -> List[str]:
		urls = [self.header_image_url] if self.header_image_url else []
		for section in self.sections:
			urls.extend(img["url"] for img in section.images if img.get("url"))
		return urls


def clean_value(value: Any) -> str:
	if not value:
		return ""
	text = str(value).strip()
	if text.upper() in ("N/A", "NA"):
		return ""
	return text


def format_date(value: Any) -> str:
	if not value:
		return ""
	if isinstance(value, str):
		try:
			value = datetime.fromisoformat(value.replace("Z", "+00:00"))
		except ValueError:
			return value
	return f"{value:%d/%m/%Y}"


def images_for_section(images: Iterable[Dict[str, Any]], key: str) -> List[Dict[str, Any]]:
	if not images or not key:
		return []
	wanted = _SECTION_ALIASES.get(key.lower(), {key.lower()})
	return [img for img in images if str(img.get("section") or "").lower() in wanted]


def build_document(worksheet: Worksheet, user: User) -> WorksheetDocument:
	content = worksheet.content or {}
	images = worksheet.images or []
	details = [
		("Experiment No", clean_value(worksheet.experiment_number)),
		("Date", format_date(worksheet.date_of_performance)),
		("Student Name", clean_value(user.name)),
		("UID", clean_value(user.uid)),
		("Branch", clean_value(user.branch or user.course)),
		("Section/Group", clean_value(user.section)),
		("Semester", clean_value(user.semester)),
		("Subject", clean_value(worksheet.subject or user.default_subject)),
	]
	sections: List[DocSection] = []

	def html_section(key: str, heading: str, html: Optional[str], placeholder: Optional[str] = None) -> None:
		blocks = parse_blocks(html)
		if not blocks and placeholder:
			blocks = parse_blocks(placeholder)
		section_images = images_for_section(images, key)
		if blocks or section_images:
			sections.append(DocSection(key, heading, blocks=blocks, images=section_images))

	def list_section(key: str, heading: str, entries: Any) -> None:
		if isinstance(entries, str):
			entries = [entries]
		items = [runs for runs in (parse_inline(e) for e in entries or []) if runs]
		if items:
			sections.append(DocSection(key, heading, items=items))

	html_section("mainQuestion", "Main Question", content.get("questionTitle"))
	html_section("aim", "Aim / Overview of the Practical", content.get("aim"))
	html_section("problemStatement", "Problem Statement", content.get("problemStatement"))
	html_section("dataset", "Dataset", content.get("dataset"))
	list_section("objective", "Objective", content.get("objective"))

	code = content.get("code")
	if isinstance(code, str):
		code = {"language": "", "source": code, "explanation": ""}
	if isinstance(code, dict) and (code.get("source") or code.get("explanation")):
		language = code.get("language") or ""
		heading = f"Code / Implementation ({language})" if language else "Code / Implementation"
		sections.append(DocSection(
			"code",
			heading,
			code_source=str(code.get("source") or ""),
			explanation=parse_blocks(code.get("explanation")),
			images=images_for_section(images, "code"),
		))

	html_section("output", "Output", content.get("output"), placeholder="No output description provided")
	list_section("learningOutcome", "Learning Outcome", content.get("learningOutcome"))

	return WorksheetDocument(
		topic=worksheet.topic or "",
		experiment_number=clean_value(worksheet.experiment_number),
		header_image_url=worksheet.header_image_url or user.header_image_url,
		details=details,
		title=None if content.get("questionTitle") else (worksheet.topic or ""),
		sections=sections,
	)


async def fetch_assets(urls: Iterable[str], timeout: float = 15.0) -> Dict[str, bytes]:
	"""Download images for embedding. Failures are logged and skipped."""
	unique = list(dict.fromkeys(u for u in urls if u))
	if not unique:
		return {}
	assets: Dict[str, bytes] = {}
	async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
		async def fetch(url: str) -> None:
			try:
				r = await client.get(url)
				r.raise_for_status()
				assets[url] = r.content
			except httpx.HTTPError as err:
				logger.warning("Failed to fetch image %s for export: %s", url, err)
		await asyncio.gather(*(fetch(u) for u in unique))
	return assets
