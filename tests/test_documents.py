"""
Tests for HTML fragment parsing, the worksheet document model and the
PDF/DOCX renderers.
"""

import io
from datetime import datetime

import docx
from pypdf import PdfReader

from worksheetai.docx_render import render_docx
from worksheetai.html_blocks import parse_blocks, parse_inline
from worksheetai.models import User, Worksheet
from worksheetai.pdf_render import render_pdf, runs_to_markup
from worksheetai.worksheet_document import build_document, clean_value, format_date, images_for_section

from conftest import make_png


def _worksheet(**content):
	return Worksheet(
		id="ws1",
		topic="Sorting Algorithms",
		subject="DSA",
		syllabus="Unit 1",
		experiment_number="4",
		date_of_performance=datetime(2024, 3, 7),
		header_image_url=None,
		content=content,
		images=[
			{"url": "https://img/out.png", "section": "Result", "caption": "Run"},
			{"url": "https://img/aim.png", "section": "overview", "caption": ""},
		],
	)


def _user(**fields):
	defaults = dict(name="Asha", uid="22BCS1", branch=None, course="BE CSE", section="A", semester="4", header_image_url="https://img/header.png")
	defaults.update(fields)
	return User(**defaults)


class TestHtmlBlocks:
	def test_paragraph_runs_keep_formatting(self):
		blocks = parse_blocks("<p>Use <b>bold</b> and <i>italic</i></p>")
		assert len(blocks) == 1
		runs = blocks[0].runs
		assert [r.text for r in runs] == ["Use ", "bold", " and ", "italic"]
		assert runs[1].bold and runs[3].italic

	def test_lists_and_nesting(self):
		blocks = parse_blocks("<ul><li>one<ol><li>inner</li></ol></li><li>two</li></ul>")
		assert [(b.kind, b.plain, b.level) for b in blocks] == [
			("bullet", "one", 0),
			("number", "inner", 1),
			("bullet", "two", 0),
		]

	def test_table_with_header_row(self):
		blocks = parse_blocks("<table><thead><tr><th>a</th><th>b</th></tr></thead><tbody><tr><td>1</td></tr></tbody></table>")
		table = blocks[0]
		assert table.kind == "table"
		assert table.header_rows == 1
		assert table.rows == [["a", "b"], ["1", ""]]

	def test_plain_text_splits_lines(self):
		assert [b.plain for b in parse_blocks("first\n\nsecond")] == ["first", "second"]

	def test_pre_becomes_code(self):
		blocks = parse_blocks("<pre>x = 1\ny = 2</pre>")
		assert blocks[0].kind == "code"
		assert blocks[0].text == "x = 1\ny = 2"

	def test_inline_entry(self):
		runs = parse_inline("<b>Outcome 1:</b> sorting")
		assert runs[0].bold and runs[0].text == "Outcome 1:"
		assert runs[-1].text == " sorting"

	def test_markup_escapes_text(self):
		runs = parse_inline("<b>a &lt; b</b>")
		assert runs_to_markup(runs) == "<b>a &lt; b</b>"


class TestWorksheetDocument:
	def test_details_and_values(self):
		doc = build_document(_worksheet(), _user())
		details = dict(doc.details)
		assert details["Date"] == "07/03/2024"
		assert details["Branch"] == "BE CSE"
		assert details["Experiment No"] == "4"

	def test_na_values_render_blank(self):
		assert clean_value("N/A") == ""
		assert clean_value(" na ") == ""
		assert clean_value("7") == "7"

	def test_format_date_accepts_iso_strings(self):
		assert format_date("2024-12-25T10:00:00Z") == "25/12/2024"

	def test_format_date_zero_pads(self):
		assert format_date(datetime(2026, 3, 5)) == "05/03/2026"

	def test_image_aliases(self):
		images = _worksheet().images
		assert [i["url"] for i in images_for_section(images, "output")] == ["https://img/out.png"]
		assert [i["url"] for i in images_for_section(images, "Aim")] == ["https://img/aim.png"]

	def test_title_only_without_question_title(self):
		assert build_document(_worksheet(), _user()).title == "Sorting Algorithms"
		assert build_document(_worksheet(questionTitle="<h3>Q</h3>"), _user()).title is None

	def test_output_placeholder_and_order(self):
		doc = build_document(_worksheet(aim="<p>Sort</p>", objective=["fast"], code={"language": "python", "source": "print(1)"}), _user())
		headings = [s.heading for s in doc.sections]
		assert headings == ["Aim / Overview of the Practical", "Objective", "Code / Implementation (python)", "Output"]
		assert doc.sections[-1].blocks[0].plain == "No output description provided"

	def test_header_falls_back_to_user(self):
		doc = build_document(_worksheet(), _user())
		assert doc.header_image_url == "https://img/header.png"
		assert doc.image_urls()[0] == "https://img/header.png"


class TestRenderers:
	content = dict(
		aim="<div><p>Compare <b>sorting</b> algorithms.</p><ul><li>bubble</li><li>merge</li></ul></div>",
		dataset="<table><tr><th>n</th><th>time</th></tr><tr><td>10</td><td>1ms</td></tr></table>",
		objective=["Measure complexity"],
		code={"language": "python", "source": "def sort(xs):\n    return sorted(xs)", "explanation": "<p>Uses <i>Timsort</i>.</p>"},
		learningOutcome=["<b>Outcome:</b> analysis"],
	)

	def test_pdf_contains_sections(self):
		doc = build_document(_worksheet(**self.content), _user())
		data = render_pdf(doc, {"https://img/out.png": make_png()})
		assert data.startswith(b"%PDF")
		text = "\n".join(page.extract_text() for page in PdfReader(io.BytesIO(data)).pages)
		assert "Aim / Overview of the Practical" in text
		assert "No output description provided" in text

	def test_pdf_skips_unreadable_images(self):
		doc = build_document(_worksheet(**self.content), _user())
		data = render_pdf(doc, {"https://img/header.png": b"not an image"})
		assert data.startswith(b"%PDF")

	def test_docx_layout(self):
		doc = build_document(_worksheet(**self.content), _user())
		data = render_docx(doc, {"https://img/header.png": make_png(), "https://img/out.png": make_png()})
		document = docx.Document(io.BytesIO(data))
		texts = [p.text for p in document.paragraphs]
		assert texts[0] == "Worksheet No - 4"
		assert "CODE / IMPLEMENTATION (PYTHON)" in texts
		assert "def sort(xs):\n    return sorted(xs)" in texts
		assert "Run" in texts
		# details table plus the dataset table
		assert len(document.tables) == 2
		assert document.tables[1].cell(0, 0).text == "n"
