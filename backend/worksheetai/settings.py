from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	gemini_max_retries: int = Field(default=5, validation_alias="GEMINI_MAX_RETRIES")
	gemini_retry_delay_seconds: float = Field(default=2.0, validation_alias="GEMINI_RETRY_DELAY_SECONDS")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="WorksheetAI", validation_alias="OPENROUTER_TITLE")

	# Identity provider. Session tokens are JWTs verified with this key
	# (shared secret for HS*, PEM public key for RS*).
	auth_jwt_key: str = Field(default="change-me", validation_alias="AUTH_JWT_KEY")
	auth_jwt_algorithm: str = Field(default="HS256", validation_alias="AUTH_JWT_ALGORITHM")
	auth_jwt_issuer: str | None = Field(default=None, validation_alias="AUTH_JWT_ISSUER")
	auth_jwt_audience: str | None = Field(default=None, validation_alias="AUTH_JWT_AUDIENCE")
	# Optional backend API used to look up profile details for new users
	clerk_secret_key: str | None = Field(default=None, validation_alias="CLERK_SECRET_KEY")
	clerk_api_url: str = Field(default="https://api.clerk.com/v1", validation_alias="CLERK_API_URL")

	admin_email: str | None = Field(default=None, validation_alias="ADMIN_EMAIL")

	# Object storage
	cloudinary_cloud_name: str | None = Field(default=None, validation_alias="CLOUDINARY_CLOUD_NAME")
	cloudinary_api_key: str | None = Field(default=None, validation_alias="CLOUDINARY_API_KEY")
	cloudinary_api_secret: str | None = Field(default=None, validation_alias="CLOUDINARY_API_SECRET")
	storage_root_folder: str = Field(default="worksheet-ai", validation_alias="STORAGE_ROOT_FOLDER")

	# Uploads
	max_upload_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
	max_download_bytes: int = Field(default=50 * 1024 * 1024, validation_alias="MAX_DOWNLOAD_BYTES")

	# Worksheet generation queue
	worksheet_queue_concurrency: int = Field(default=5, validation_alias="WORKSHEET_QUEUE_CONCURRENCY")
	worksheet_queue_timeout_seconds: float = Field(default=60.0, validation_alias="WORKSHEET_QUEUE_TIMEOUT_SECONDS")

	# Template suggestions cache (per user)
	template_cache_ttl_seconds: int = Field(default=30 * 60, validation_alias="TEMPLATE_CACHE_TTL_SECONDS")
	# Preset auto-selected on the generator page when no university is chosen
	default_university_match: str = Field(default="chandigarh,cu", validation_alias="DEFAULT_UNIVERSITY_MATCH")

	cors_origins: str = Field(default="*", validation_alias="CORS_ORIGINS")
	# Per-client-IP limit applied to every route
	rate_limit: str = Field(default="1000/15 minutes", validation_alias="RATE_LIMIT")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
