from __future__ import annotations
import io
import logging
from typing import Dict, List, Optional

import docx
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor

from .html_blocks import Block, Run
from .worksheet_document import DocSection, WorksheetDocument

logger = logging.getLogger(__name__)

CONTENT_WIDTH = Inches(6.5)
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class DocxRenderError(RuntimeError):
	pass


def _shade(paragraph, fill: str) -> None:
	p_pr = paragraph._p.get_or_add_pPr()
	shd = OxmlElement("w:shd")
	shd.set(qn("w:val"), "clear")
	shd.set(qn("w:color"), "auto")
	shd.set(qn("w:fill"), fill)
	p_pr.append(shd)


def _add_runs(paragraph, runs: List[Run], size: int = 10) -> None:
	for run in runs:
		parts = run.text.split("\n")
		for i, part in enumerate(parts):
			if i:
				paragraph.add_run().add_break()
			if not part:
				continue
			r = paragraph.add_run(part)
			r.bold = run.bold or None
			r.italic = run.italic or None
			r.underline = run.underline or None
			r.font.size = Pt(size)
			if run.code:
				r.font.name = "Courier New"


def _add_code(document, source: str) -> None:
	paragraph = document.add_paragraph()
	_shade(paragraph, "F5F5F5")
	paragraph.paragraph_format.space_before = Pt(5)
	paragraph.paragraph_format.space_after = Pt(5)
	lines = source.split("\n")
	for i, line in enumerate(lines):
		r = paragraph.add_run(line)
		r.font.name = "Courier New"
		r.font.size = Pt(9)
		if i < len(lines) - 1:
			r.add_break()


def _add_blocks(document, blocks: List[Block]) -> None:
	for block in blocks:
		if block.kind == "paragraph":
			_add_runs(document.add_paragraph(), block.runs)
		elif block.kind == "heading":
			p = document.add_paragraph()
			_add_runs(p, block.runs, size=11)
		elif block.kind in ("bullet", "number"):
			style = "List Bullet" if block.kind == "bullet" else "List Number"
			if block.level:
				style += f" {min(block.level + 1, 3)}"
			_add_runs(document.add_paragraph(style=style), block.runs)
		elif block.kind == "code":
			_add_code(document, block.text)
		elif block.kind == "table":
			cols = len(block.rows[0])
			table = document.add_table(rows=len(block.rows), cols=cols)
			table.style = "Table Grid"
			table.alignment = WD_TABLE_ALIGNMENT.CENTER
			for i, row in enumerate(block.rows):
				for j, value in enumerate(row):
					cell = table.cell(i, j)
					cell.text = value
					if i < block.header_rows:
						for r in cell.paragraphs[0].runs:
							r.bold = True
			document.add_paragraph()


def _add_images(document, images: List[dict], assets: Dict[str, bytes], heading: str) -> None:
	for img in images:
		data = assets.get(img.get("url") or "")
		if not data:
			continue
		try:
			document.add_picture(io.BytesIO(data), width=Inches(5))
		except Exception as err:
			logger.warning("Skipping unreadable image %s: %s", img.get("url"), err)
			continue
		document.paragraphs[-1].alignment = WD_ALIGN_PARAGRAPH.CENTER
		caption = document.add_paragraph()
		caption.alignment = WD_ALIGN_PARAGRAPH.CENTER
		r = caption.add_run(img.get("caption") or f"Figure: {heading} Image")
		r.italic = True
		r.font.size = Pt(9)
		r.font.color.rgb = RGBColor(0x55, 0x55, 0x55)


def _add_section(document, section: DocSection, assets: Dict[str, bytes]) -> None:
	heading = document.add_paragraph()
	heading.paragraph_format.space_before = Pt(10)
	heading.paragraph_format.space_after = Pt(7)
	r = heading.add_run(section.heading.upper())
	r.bold = True
	r.font.size = Pt(12)

	_add_blocks(document, section.blocks)
	for runs in section.items:
		_add_runs(document.add_paragraph(style="List Bullet"), runs)
	if section.code_source:
		_add_code(document, section.code_source)
	_add_images(document, section.images, assets, section.heading)
	if section.explanation:
		p = document.add_paragraph()
		_add_runs(p, [Run("Explanation:", bold=True)])
		_add_blocks(document, section.explanation)


def render_docx(doc: WorksheetDocument, assets: Optional[Dict[str, bytes]] = None) -> bytes:
	assets = assets or {}
	try:
		document = docx.Document()
		sec = document.sections[0]
		sec.top_margin = sec.bottom_margin = Inches(0.79)
		sec.left_margin = sec.right_margin = Inches(1)

		header_data = assets.get(doc.header_image_url or "")
		if header_data:
			try:
				sec.header.paragraphs[0].add_run().add_picture(io.BytesIO(header_data), width=CONTENT_WIDTH)
			except Exception as err:
				logger.warning("Failed to embed header image in DOCX: %s", err)

		title = document.add_paragraph()
		title.alignment = WD_ALIGN_PARAGRAPH.CENTER
		r = title.add_run(f"Worksheet No - {doc.experiment_number or 'N/A'}")
		r.bold = True
		r.font.size = Pt(16)

		half = (len(doc.details) + 1) // 2
		table = document.add_table(rows=1, cols=2)
		for cell, pairs in zip(table.rows[0].cells, (doc.details[:half], doc.details[half:])):
			cell.paragraphs[0].text = ""
			for i, (label, value) in enumerate(pairs):
				p = cell.paragraphs[0] if i == 0 else cell.add_paragraph()
				label_run = p.add_run(f"{label.upper()}:")
				label_run.bold = True
				label_run.font.size = Pt(10)
				value_run = p.add_run(f" {value}")
				value_run.font.size = Pt(10)
		document.add_paragraph()

		if doc.title:
			p = document.add_paragraph()
			p.alignment = WD_ALIGN_PARAGRAPH.CENTER
			r = p.add_run(doc.title)
			r.bold = True
			r.font.size = Pt(14)

		for section in doc.sections:
			_add_section(document, section, assets)

		buf = io.BytesIO()
		document.save(buf)
	except Exception as err:
		logger.error("DOCX generation error: %s", err)
		raise DocxRenderError(f"Failed to generate DOCX: {err}") from err
	return buf.getvalue()
