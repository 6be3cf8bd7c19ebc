from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# backend/ lives next to ecosystem.config.cjs and the bot/ directory
WORKSPACE_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Auth configuration (admin session cookie carrying a signed JWT)
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	auth_cookie: str = Field(default="admin_token", validation_alias="AUTH_COOKIE")
	auth_session_days: int = Field(default=7, validation_alias="AUTH_SESSION_DAYS")
	cookie_secure: bool = Field(default=False, validation_alias="AUTH_COOKIE_SECURE")
	bcrypt_rounds: int = Field(default=12, validation_alias="BCRYPT_ROUNDS")
	# Seed admin, created at startup when missing
	seed_admin_email: str | None = Field(default=None, validation_alias="SEED_ADMIN_EMAIL")
	seed_admin_password: str | None = Field(default=None, validation_alias="SEED_ADMIN_PASSWORD")

	# Login throttling
	login_window_seconds: int = Field(default=10 * 60, validation_alias="LOGIN_WINDOW_SECONDS")
	login_max_attempts: int = Field(default=5, validation_alias="LOGIN_MAX_ATTEMPTS")
	login_block_seconds: int = Field(default=15 * 60, validation_alias="LOGIN_BLOCK_SECONDS")

	# Bot process supervision (pm2)
	bot_process_name: str = Field(default="speechcenter-bot", validation_alias="BOT_PROCESS_NAME")
	pm2_binary: str = Field(default="pm2", validation_alias="PM2_BINARY")
	pm2_ecosystem_path: str | None = Field(default=None, validation_alias="PM2_ECOSYSTEM_PATH")
	pm2_cwd: str | None = Field(default=None, validation_alias="PM2_CWD")
	supervisor_timeout_seconds: float = Field(default=15.0, validation_alias="SUPERVISOR_TIMEOUT_SECONDS")
	# The worker heartbeats faster than this while alive
	heartbeat_stale_seconds: float = Field(default=12.0, validation_alias="BOT_HEARTBEAT_STALE_SECONDS")

	# Expired admin sessions are purged at startup and then on this interval
	session_cleanup_interval_seconds: int = Field(default=24 * 60 * 60, validation_alias="SESSION_CLEANUP_INTERVAL_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def session_days(self) -> int:
		return self.auth_session_days if self.auth_session_days > 0 else 7

	@property
	def supervisor_cwd(self) -> Path:
		return Path(self.pm2_cwd) if self.pm2_cwd else WORKSPACE_ROOT

	@property
	def ecosystem_path(self) -> Path:
		if self.pm2_ecosystem_path:
			return Path(self.pm2_ecosystem_path)
		return self.supervisor_cwd / "ecosystem.config.cjs"

settings = Settings()
