"""
Tests for PDF text extraction, validation and section detection.
"""

import pytest

from worksheetai.models import DEFAULT_SECTIONS
from worksheetai.pdf_text import (
	ExtractedPdf,
	PdfExtractionError,
	detect_sections,
	extract_text,
	validate_structure,
)

from conftest import make_pdf


class TestExtractText:
	def test_extracts_all_pages(self):
		extracted = extract_text(make_pdf())
		assert extracted.pages == 1
		assert "Problem Statement" in extracted.text

	def test_garbage_raises(self):
		with pytest.raises(PdfExtractionError, match="corrupted or scanned"):
			extract_text(b"definitely not a pdf")


class TestValidateStructure:
	def test_real_worksheet_is_valid(self):
		result = validate_structure(extract_text(make_pdf()))
		assert result.is_valid
		assert result.issues == []

	def test_mid_length_text_is_too_short(self):
		text = "Aim of the experiment " * 7
		result = validate_structure(ExtractedPdf(text=text, pages=1))
		assert result.issues == ["PDF content is too short to be a valid worksheet"]

	def test_missing_keywords(self):
		text = "lorem ipsum dolor sit amet " * 20
		result = validate_structure(ExtractedPdf(text=text, pages=1))
		assert not result.is_valid
		assert result.issues == ["PDF does not appear to contain standard worksheet sections"]


class TestDetectSections:
	def test_sections_follow_table_order(self):
		text = "Output: 42\nAim: to test\nCode: print(42)"
		assert detect_sections(text) == ["Aim", "Code", "Output"]

	def test_each_section_once(self):
		text = "Aim: a\nPurpose: b\nOverview: c"
		assert detect_sections(text) == ["Aim"]

	def test_defaults_when_nothing_matches(self):
		assert detect_sections("lorem ipsum") == list(DEFAULT_SECTIONS)
