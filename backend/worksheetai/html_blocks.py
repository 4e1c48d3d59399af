"""
Flatten the HTML fragments the model writes into a small block model.

The PDF and DOCX renderers both consume these blocks, so they only need to
know about paragraphs, headings, list items, tables and code, never HTML.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

_BLOCK_CONTAINERS = {"div", "section", "article", "body", "html", "blockquote", "main", "header", "footer"}
_HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_BOLD = {"b", "strong", "th"}
_ITALIC = {"i", "em"}


@dataclass
class Run:
	text: str
	bold: bool = False
	italic: bool = False
	underline: bool = False
	code: bool = False


@dataclass
class Block:
	kind: str  # paragraph | heading | bullet | number | table | code
	runs: List[Run] = field(default_factory=list)
	rows: List[List[str]] = field(default_factory=list)
	header_rows: int = 0
	text: str = ""
	level: int = 0

	@property
	def plain(self) -> str:
		return self.text or "".join(r.text for r in self.runs)


def _normalize(text: str) -> str:
	return " ".join(text.replace("\xa0", " ").split())


def _inline_runs(node, bold=False, italic=False, underline=False, code=False) -> List[Run]:
	runs: List[Run] = []
	for child in node.children if isinstance(node, Tag) else [node]:
		if isinstance(child, NavigableString):
			raw = str(child).replace("\xa0", " ")
			if not raw.strip():
				if raw and runs and not runs[-1].text.endswith(" "):
					runs.append(Run(" ", bold, italic, underline, code))
				continue
			text = " ".join(raw.split())
			if raw[0].isspace():
				text = " " + text
			if raw[-1].isspace():
				text += " "
			runs.append(Run(text, bold, italic, underline, code))
		elif isinstance(child, Tag):
			if child.name == "br":
				runs.append(Run("\n", bold, italic, underline, code))
				continue
			runs.extend(_inline_runs(
				child,
				bold or child.name in _BOLD,
				italic or child.name in _ITALIC,
				underline or child.name == "u",
				code or child.name == "code",
			))
	return runs


def _trim(runs: List[Run]) -> List[Run]:
	while runs and not runs[0].text.strip():
		runs = runs[1:]
	while runs and not runs[-1].text.strip():
		runs = runs[:-1]
	if runs:
		runs[0] = Run(runs[0].text.lstrip(" "), runs[0].bold, runs[0].italic, runs[0].underline, runs[0].code)
		runs[-1] = Run(runs[-1].text.rstrip(" "), runs[-1].bold, runs[-1].italic, runs[-1].underline, runs[-1].code)
	return runs


class _Builder:
	def __init__(self) -> None:
		self.blocks: List[Block] = []
		self._pending: List[Run] = []

	def flush(self) -> None:
		runs = _trim(self._pending)
		self._pending = []
		if runs:
			self.blocks.append(Block("paragraph", runs=runs))

	def walk(self, node, list_depth: int = 0) -> None:
		for child in node.children:
			if isinstance(child, NavigableString):
				if str(child).strip():
					self._pending.extend(_inline_runs(child))
				continue
			if not isinstance(child, Tag):
				continue
			name = child.name
			if name in _BLOCK_CONTAINERS:
				self.flush()
				self.walk(child, list_depth)
				self.flush()
			elif name == "p":
				self.flush()
				self._pending = _inline_runs(child)
				self.flush()
			elif name in _HEADINGS:
				self.flush()
				runs = _trim(_inline_runs(child, bold=True))
				if runs:
					self.blocks.append(Block("heading", runs=runs, level=int(name[1])))
			elif name in ("ul", "ol"):
				self.flush()
				self._list(child, "bullet" if name == "ul" else "number", list_depth)
			elif name == "table":
				self.flush()
				self._table(child)
			elif name == "pre":
				self.flush()
				text = child.get_text()
				if text.strip():
					self.blocks.append(Block("code", text=text.strip("\n")))
			elif name == "br":
				self.flush()
			else:
				self._pending.extend(_inline_runs(child, name in _BOLD, name in _ITALIC, name == "u", name == "code"))

	def _list(self, node: Tag, kind: str, depth: int) -> None:
		for li in node.find_all("li", recursive=False):
			nested = [c for c in li.children if isinstance(c, Tag) and c.name in ("ul", "ol")]
			for n in nested:
				n.extract()
			runs = _trim(_inline_runs(li))
			if runs:
				self.blocks.append(Block(kind, runs=runs, level=depth))
			for n in nested:
				self._list(n, "bullet" if n.name == "ul" else "number", depth + 1)

	def _table(self, node: Tag) -> None:
		rows: List[List[str]] = []
		header_rows = 0
		for tr in node.find_all("tr"):
			cells = tr.find_all(["th", "td"], recursive=False)
			if not cells:
				continue
			if all(c.name == "th" for c in cells) and len(rows) == header_rows:
				header_rows += 1
			rows.append([_normalize(c.get_text(" ")) for c in cells])
		if rows:
			width = max(len(r) for r in rows)
			rows = [r + [""] * (width - len(r)) for r in rows]
			self.blocks.append(Block("table", rows=rows, header_rows=header_rows))


def parse_blocks(html: Optional[str]) -> List[Block]:
	if not html or not str(html).strip():
		return []
	text = str(html)
	if "<" not in text:
		return [Block("paragraph", runs=[Run(line.strip())]) for line in text.splitlines() if line.strip()]
	soup = BeautifulSoup(text, "html.parser")
	builder = _Builder()
	builder.walk(soup)
	builder.flush()
	return builder.blocks


def parse_inline(html: Optional[str]) -> List[Run]:
	"""Runs for a single list entry such as ``"<b>Outcome 1:</b> text"``."""
	if not html:
		return []
	soup = BeautifulSoup(str(html), "html.parser")
	return _trim(_inline_runs(soup))
