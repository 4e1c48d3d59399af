"""
Tests for university presets, their background analysis and the admin API.
"""

from unittest.mock import AsyncMock, patch

import pytest

from worksheetai.cleanup import fail_interrupted_analyses
from worksheetai.db import SessionLocal
from worksheetai.models import Template, University, Worksheet
from worksheetai.pdf_text import ExtractedPdf, PdfExtractionError
from worksheetai.worksheet_ai import StructureAnalysis

from conftest import SAMPLE_LINES, make_pdf, make_png


def _create(client, admin, name="Chandigarh University"):
	files = {
		"headerImage": ("header.png", make_png(), "image/png"),
		"sampleTemplate": ("sample.pdf", make_pdf(), "application/pdf"),
	}
	return client.post("/api/universities", data={"name": name}, files=files, headers=admin)


@pytest.fixture
def extract_ok():
	mock = AsyncMock(return_value=ExtractedPdf(text="\n".join(SAMPLE_LINES), pages=1))
	with patch("worksheetai.routers.universities.extract_text_from_url", mock):
		yield mock


class TestAdminGuard:
	def test_non_admin_is_forbidden(self, client, student):
		r = client.get("/api/universities/all", headers=student)
		assert r.status_code == 403

	def test_admin_email_match_is_case_insensitive(self, client, admin):
		r = client.get("/api/universities/all", headers=admin)
		assert r.status_code == 200

	def test_unset_admin_email_is_server_error(self, client, admin, monkeypatch):
		from worksheetai.settings import settings

		monkeypatch.setattr(settings, "admin_email", None)
		r = client.get("/api/admin/stats", headers=admin)
		assert r.status_code == 500


class TestCreatePreset:
	def test_create_runs_analysis_and_links_template(self, client, admin, extract_ok, storage):
		r = _create(client, admin)
		assert r.status_code == 201, r.text
		assert r.json()["university"]["analysisStatus"] == "processing"
		assert extract_ok.await_args.args[0].startswith("https://api.cloudinary.com/")

		universities = client.get("/api/universities").json()["universities"]
		assert len(universities) == 1
		preset = universities[0]
		assert preset["analysisStatus"] == "completed"
		assert preset["defaultTemplateId"]["templateName"] == "Chandigarh University Official Template"
		assert preset["defaultTemplateId"]["sectionsOrder"] == ["Aim", "Theory", "Code"]

	def test_both_files_required(self, client, admin):
		files = {"headerImage": ("header.png", make_png(), "image/png")}
		r = client.post("/api/universities", data={"name": "X"}, files=files, headers=admin)
		assert r.status_code == 400
		assert r.json()["message"] == "Both Header Image and Sample PDF are required"

	def test_duplicate_name_rejected(self, client, admin, extract_ok):
		_create(client, admin)
		r = _create(client, admin)
		assert r.status_code == 400
		assert r.json()["message"] == "University name already exists"

	def test_failed_extraction_marks_failed(self, client, admin):
		failing = AsyncMock(side_effect=PdfExtractionError("HTTP 404", status_code=404))
		with patch("worksheetai.routers.universities.extract_text_from_url", failing):
			_create(client, admin)
		preset = client.get("/api/universities/all", headers=admin).json()["universities"][0]
		assert preset["analysisStatus"] == "failed"
		assert preset["analysisError"] == "HTTP 404"

	def test_reanalyze_updates_template_in_place(self, client, admin, ai, extract_ok):
		_create(client, admin)
		preset = client.get("/api/universities/all", headers=admin).json()["universities"][0]
		ai.analysis = StructureAnalysis(sections=["Aim", "Result"], style="Practical", level="Undergraduate", confidence="high")
		r = client.post(f"/api/universities/{preset['_id']}/analyze", headers=admin)
		assert r.status_code == 200
		db = SessionLocal()
		try:
			templates = db.query(Template).all()
			assert len(templates) == 1
			assert templates[0].sections_order == ["Aim", "Result"]
			assert templates[0].id == preset["defaultTemplateId"]
		finally:
			db.close()

	def test_delete_removes_assets(self, client, admin, extract_ok, storage):
		_create(client, admin)
		preset = client.get("/api/universities/all", headers=admin).json()["universities"][0]
		r = client.delete(f"/api/universities/{preset['_id']}", headers=admin)
		assert r.status_code == 200
		assert {rt for _, rt in storage.deleted} == {"image", "raw"}
		assert client.get("/api/universities").json()["universities"] == []


def test_startup_sweep_fails_stuck_analyses():
	db = SessionLocal()
	try:
		db.add(University(
			name="Stuck",
			header_image_url="h",
			header_image_public_id="h",
			sample_template_url="s",
			sample_template_public_id="s",
			analysis_status="processing",
		))
		db.commit()
		assert fail_interrupted_analyses(db) == 1
		row = db.query(University).one()
		assert row.analysis_status == "failed"
		assert fail_interrupted_analyses(db) == 0
	finally:
		db.close()


class TestAdminApi:
	def test_stats_count_this_month(self, client, admin, student):
		from datetime import datetime, timedelta

		client.post("/api/worksheets/generate", data={"topic": "T", "syllabus": "S"}, headers=student)
		db = SessionLocal()
		try:
			old = db.query(Worksheet).one()
			old.created_at = datetime.utcnow().replace(day=1) - timedelta(days=3)
			db.commit()
		finally:
			db.close()
		client.post("/api/worksheets/generate", data={"topic": "T2", "syllabus": "S"}, headers=student)

		stats = client.get("/api/admin/stats", headers=admin).json()["stats"]
		assert stats["totalUsers"] == 2
		assert stats["totalWorksheets"] == 2
		assert stats["monthlyUsage"] == 1

	def test_users_pagination(self, client, admin, auth_headers):
		for i in range(3):
			client.get("/api/auth/profile", headers=auth_headers(sub=f"u{i}", email=f"u{i}@example.com"))
		body = client.get("/api/admin/users", params={"page": 1, "limit": 2}, headers=admin).json()
		assert len(body["users"]) == 2
		assert body["pagination"] == {"current": 1, "pages": 2, "total": 4, "hasMore": True}
