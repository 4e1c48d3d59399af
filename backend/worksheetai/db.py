from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./worksheetai.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release; applied on startup (SQLite-friendly)
_LATE_COLUMNS = {
	"users": {
		"header_image_url": "VARCHAR(1024)",
		"header_image_public_id": "VARCHAR(512)",
		"profile_completed": "BOOLEAN DEFAULT 0 NOT NULL",
	},
	"worksheets": {
		"header_image_url": "VARCHAR(1024)",
	},
	"universities": {
		"analysis_error": "TEXT",
	},
}


def ensure_schema() -> None:
	inspector = inspect(engine)
	tables = set(inspector.get_table_names())
	for table, columns in _LATE_COLUMNS.items():
		if table not in tables:
			continue
		existing = {c["name"] for c in inspector.get_columns(table)}
		with engine.begin() as conn:
			for name, ddl in columns.items():
				if name not in existing:
					conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
