from __future__ import annotations
import io
import logging
from typing import Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
	Image,
	KeepTogether,
	ListFlowable,
	ListItem,
	Paragraph,
	Preformatted,
	SimpleDocTemplate,
	Spacer,
	Table,
	TableStyle,
)

from .html_blocks import Block, Run
from .worksheet_document import DocSection, WorksheetDocument

logger = logging.getLogger(__name__)

MARGINS = {"topMargin": 20 * mm, "rightMargin": 15 * mm, "bottomMargin": 20 * mm, "leftMargin": 15 * mm}
CONTENT_WIDTH = A4[0] - MARGINS["leftMargin"] - MARGINS["rightMargin"]
HEADER_IMAGE_MAX_HEIGHT = 32 * mm


class PdfRenderError(RuntimeError):
	pass


def _styles() -> Dict[str, ParagraphStyle]:
	base = getSampleStyleSheet()
	body = ParagraphStyle("WsBody", parent=base["Normal"], fontName="Times-Roman", fontSize=12, leading=18, alignment=TA_JUSTIFY, spaceAfter=6)
	return {
		"body": body,
		"title": ParagraphStyle("WsTitle", parent=body, fontName="Times-Bold", fontSize=18, leading=22, alignment=TA_CENTER, spaceAfter=18),
		"heading": ParagraphStyle("WsHeading", parent=body, fontName="Times-Bold", fontSize=13, leading=16, spaceBefore=10, spaceAfter=8, textColor=colors.HexColor("#222222")),
		"subheading": ParagraphStyle("WsSubheading", parent=body, fontName="Times-Bold", fontSize=12, leading=15, spaceAfter=4),
		"label": ParagraphStyle("WsLabel", parent=body, fontName="Times-Bold", fontSize=11, leading=14, textColor=colors.HexColor("#333333"), alignment=0, spaceAfter=0),
		"value": ParagraphStyle("WsValue", parent=body, fontName="Times-Bold", fontSize=11, leading=14, alignment=0, spaceAfter=0),
		"cell": ParagraphStyle("WsCell", parent=body, fontSize=10, leading=13, alignment=0, spaceAfter=0),
		"code": ParagraphStyle("WsCode", parent=base["Code"], fontName="Courier", fontSize=9, leading=12, backColor=colors.HexColor("#f8f9fa"), borderPadding=6, spaceBefore=6, spaceAfter=10),
		"caption": ParagraphStyle("WsCaption", parent=body, fontName="Times-Italic", fontSize=10, alignment=TA_CENTER, textColor=colors.HexColor("#555555")),
	}


def runs_to_markup(runs: List[Run]) -> str:
	out = []
	for run in runs:
		text = escape(run.text).replace("\n", "<br/>")
		if run.code:
			text = f'<font face="Courier">{text}</font>'
		if run.underline:
			text = f"<u>{text}</u>"
		if run.italic:
			text = f"<i>{text}</i>"
		if run.bold:
			text = f"<b>{text}</b>"
		out.append(text)
	return "".join(out)


def _image(data: Optional[bytes], max_width: float, max_height: float):
	if not data:
		return None
	try:
		reader = ImageReader(io.BytesIO(data))
		width, height = reader.getSize()
	except Exception as err:
		logger.warning("Skipping unreadable image: %s", err)
		return None
	scale = min(max_width / width, max_height / height, 1.0)
	return Image(io.BytesIO(data), width=width * scale, height=height * scale)


def _blocks(blocks: List[Block], styles: Dict[str, ParagraphStyle]) -> list:
	flow: list = []
	pending_list: List[Block] = []

	def flush_list() -> None:
		if not pending_list:
			return
		kind = pending_list[0].kind
		items = [ListItem(Paragraph(runs_to_markup(b.runs), styles["body"]), leftIndent=12 + 12 * b.level) for b in pending_list]
		flow.append(ListFlowable(items, bulletType="bullet" if kind == "bullet" else "1", leftIndent=18))
		pending_list.clear()

	for block in blocks:
		if block.kind in ("bullet", "number"):
			if pending_list and pending_list[0].kind != block.kind:
				flush_list()
			pending_list.append(block)
			continue
		flush_list()
		if block.kind == "paragraph":
			flow.append(Paragraph(runs_to_markup(block.runs), styles["body"]))
		elif block.kind == "heading":
			flow.append(Paragraph(runs_to_markup(block.runs), styles["subheading"]))
		elif block.kind == "code":
			flow.append(Preformatted(block.text, styles["code"], maxLineLength=95, newLineChars=""))
		elif block.kind == "table":
			data = [[Paragraph(escape(cell), styles["cell"]) for cell in row] for row in block.rows]
			table = Table(data, colWidths=[CONTENT_WIDTH / len(block.rows[0])] * len(block.rows[0]), repeatRows=block.header_rows)
			style = [
				("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#dddddd")),
				("VALIGN", (0, 0), (-1, -1), "TOP"),
				("TOPPADDING", (0, 0), (-1, -1), 4),
				("BOTTOMPADDING", (0, 0), (-1, -1), 4),
			]
			if block.header_rows:
				style.append(("BACKGROUND", (0, 0), (-1, block.header_rows - 1), colors.HexColor("#f2f2f2")))
			table.setStyle(TableStyle(style))
			flow.extend([table, Spacer(1, 8)])
	flush_list()
	return flow


def _section(section: DocSection, styles: Dict[str, ParagraphStyle], assets: Dict[str, bytes]) -> list:
	flow: list = [Paragraph(escape(section.heading), styles["heading"])]
	flow.extend(_blocks(section.blocks, styles))
	if section.items:
		flow.append(ListFlowable(
			[ListItem(Paragraph(runs_to_markup(runs), styles["body"])) for runs in section.items],
			bulletType="bullet",
			leftIndent=24,
		))
	if section.code_source:
		flow.append(Preformatted(section.code_source, styles["code"], maxLineLength=95, newLineChars=""))
	for img in section.images:
		picture = _image(assets.get(img["url"]), CONTENT_WIDTH * 0.9, 120 * mm)
		if picture is None:
			continue
		caption = img.get("caption") or f"Figure: {section.heading} Image"
		flow.append(KeepTogether([Spacer(1, 6), picture, Paragraph(escape(caption), styles["caption"]), Spacer(1, 6)]))
	if section.explanation:
		flow.append(Paragraph("<b>Explanation:</b>", styles["body"]))
		flow.extend(_blocks(section.explanation, styles))
	flow.append(Spacer(1, 10))
	return flow


def render_pdf(doc: WorksheetDocument, assets: Optional[Dict[str, bytes]] = None) -> bytes:
	assets = assets or {}
	styles = _styles()
	story: list = []

	header = _image(assets.get(doc.header_image_url or ""), CONTENT_WIDTH, HEADER_IMAGE_MAX_HEIGHT)
	if header is not None:
		story.extend([header, Spacer(1, 8 * mm)])

	rows = []
	pairs = doc.details
	for i in range(0, len(pairs), 2):
		row = []
		for label, value in pairs[i:i + 2]:
			row.extend([Paragraph(escape(f"{label}:"), styles["label"]), Paragraph(escape(value), styles["value"])])
		rows.append(row)
	details = Table(rows, colWidths=[CONTENT_WIDTH / 4] * 4)
	details.setStyle(TableStyle([
		("VALIGN", (0, 0), (-1, -1), "TOP"),
		("LINEBELOW", (1, 0), (1, -1), 0.5, colors.HexColor("#eeeeee")),
		("LINEBELOW", (3, 0), (3, -1), 0.5, colors.HexColor("#eeeeee")),
	]))
	story.extend([details, Spacer(1, 8 * mm)])

	if doc.title:
		story.append(Paragraph(escape(doc.title.upper()), styles["title"]))

	for section in doc.sections:
		story.extend(_section(section, styles, assets))

	buf = io.BytesIO()
	try:
		SimpleDocTemplate(buf, pagesize=A4, title=f"Worksheet - {doc.topic}", **MARGINS).build(story)
	except Exception as err:
		logger.error("PDF generation error: %s", err)
		raise PdfRenderError("Failed to generate PDF") from err
	return buf.getvalue()
