from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, JSON, ForeignKey, Index
from .db import Base


DEFAULT_SECTIONS = [
	"Aim",
	"Problem Statement",
	"Dataset",
	"Objective",
	"Code",
	"Output",
	"Learning Outcome",
]

NOT_SET = "Not Set"

TEMPLATE_STATUSES = ("active", "invalid", "archived")
WORKSHEET_STATUSES = ("draft", "generated", "edited", "finalized")
ANALYSIS_STATUSES = ("pending", "processing", "completed", "failed")


def new_id() -> str:
	return uuid.uuid4().hex


class User(Base):
	__tablename__ = "users"
	id = Column(String(32), primary_key=True, default=new_id)
	# Subject claim issued by the identity provider
	external_id = Column(String(128), unique=True, index=True, nullable=False)
	email = Column(String(256), unique=True, index=True, nullable=False)
	name = Column(String(256), default="User", nullable=False)
	university = Column(String(256), default=NOT_SET, nullable=False)
	course = Column(String(256), default=NOT_SET, nullable=False)
	semester = Column(String(64), default=NOT_SET, nullable=False)
	default_subject = Column(String(256), nullable=True)
	uid = Column(String(128), nullable=True)
	branch = Column(String(256), nullable=True)
	section = Column(String(128), nullable=True)
	header_image_url = Column(String(1024), nullable=True)
	header_image_public_id = Column(String(512), nullable=True)
	profile_completed = Column(Boolean, default=False, nullable=False)
	last_login = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class UserAIMemory(Base):
	__tablename__ = "user_ai_memory"
	id = Column(String(32), primary_key=True, default=new_id)
	user_id = Column(String(32), ForeignKey("users.id"), unique=True, nullable=False)
	preferred_structure = Column(String(32), default="LAB_STYLE", nullable=False)
	writing_depth = Column(String(32), default="medium", nullable=False)
	variation_level = Column(String(32), default="high", nullable=False)
	common_mistakes = Column(JSON, default=lambda: [], nullable=False)
	preferred_code_style = Column(String(32), default="commented", nullable=False)
	learning_patterns = Column(JSON, default=lambda: {
		"averageTopicComplexity": "medium",
		"commonSubjects": [],
		"preferredExampleTypes": [],
	}, nullable=False)
	generation_history = Column(JSON, default=lambda: {
		"totalGenerated": 0,
		"lastGeneratedAt": None,
		"favoriteTemplates": [],
	}, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	def update_patterns(self, worksheet: "Worksheet") -> None:
		history = dict(self.generation_history or {})
		history["totalGenerated"] = int(history.get("totalGenerated") or 0) + 1
		history["lastGeneratedAt"] = datetime.utcnow().isoformat()
		self.generation_history = history
		patterns = dict(self.learning_patterns or {})
		subjects = list(patterns.get("commonSubjects") or [])
		if worksheet.topic and worksheet.topic not in subjects:
			subjects.append(worksheet.topic)
		patterns["commonSubjects"] = subjects
		self.learning_patterns = patterns

	def add_mistake(self, mistake: str) -> bool:
		mistakes = list(self.common_mistakes or [])
		if mistake in mistakes:
			return False
		mistakes.append(mistake)
		self.common_mistakes = mistakes
		return True


class Template(Base):
	__tablename__ = "templates"
	id = Column(String(32), primary_key=True, default=new_id)
	template_name = Column(String(512), unique=True, nullable=False)
	university = Column(String(256), nullable=False)
	course = Column(String(256), nullable=False)
	subject = Column(String(256), nullable=False)
	sections_order = Column(JSON, default=lambda: list(DEFAULT_SECTIONS), nullable=False)
	style = Column(String(128), default="Formal Academic", nullable=False)
	level = Column(String(128), default="Post Graduate", nullable=False)
	created_from_sample = Column(Boolean, default=False, nullable=False)
	sample_pdf_url = Column(String(1024), nullable=True)
	user_id = Column(String(32), ForeignKey("users.id"), nullable=True)
	usage_count = Column(Integer, default=0, nullable=False)
	status = Column(String(16), default="active", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (Index("ix_templates_suggest", "university", "course", "subject"),)

	def increment_usage(self) -> None:
		self.usage_count = (self.usage_count or 0) + 1


class Worksheet(Base):
	__tablename__ = "worksheets"
	id = Column(String(32), primary_key=True, default=new_id)
	user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
	template_id = Column(String(32), ForeignKey("templates.id"), nullable=False)
	topic = Column(String(512), nullable=False)
	subject = Column(String(256), default="Computer Science", nullable=False)
	syllabus = Column(Text, nullable=False)
	difficulty = Column(String(16), default="medium", nullable=False)
	content = Column(JSON, default=lambda: {}, nullable=False)
	images = Column(JSON, default=lambda: [], nullable=False)
	header_image_url = Column(String(1024), nullable=True)
	pdf_url = Column(String(1024), nullable=True)
	version = Column(Integer, default=1, nullable=False)
	status = Column(String(16), default="draft", nullable=False)
	experiment_number = Column(String(64), nullable=True)
	date_of_performance = Column(DateTime, default=datetime.utcnow, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (Index("ix_worksheets_user_created", "user_id", "created_at"),)

	def increment_version(self) -> None:
		self.version = (self.version or 1) + 1
		self.status = "edited"

	def add_image(self, url: str, section: str, caption: str) -> dict:
		image = {
			"url": url,
			"section": section,
			"caption": caption,
			"uploadedAt": datetime.utcnow().isoformat(),
		}
		self.images = list(self.images or []) + [image]
		return image


class University(Base):
	__tablename__ = "universities"
	id = Column(String(32), primary_key=True, default=new_id)
	name = Column(String(256), unique=True, nullable=False)
	header_image_url = Column(String(1024), nullable=False)
	header_image_public_id = Column(String(512), nullable=False)
	sample_template_url = Column(String(1024), nullable=False)
	sample_template_public_id = Column(String(512), nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	analysis_status = Column(String(16), default="pending", nullable=False)
	analysis_error = Column(Text, nullable=True)
	default_template_id = Column(String(32), ForeignKey("templates.id"), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
