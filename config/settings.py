from functools import lru_cache

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeedSettings(BaseModel):
	enabled: bool = True
	url: str
	refresh_interval: float = Field(gt=0, description='Seconds between successful refreshes')
	priority: int = 0
	rate_type: str | None = None


class Settings(BaseSettings):
	DATABASE_URL: str = 'sqlite+aiosqlite:///./fx_ratecache.db'
	ARCHIVE_ENABLED: bool = True

	# Application
	APP_NAME: str = 'FX Rate Cache'
	DEBUG: bool = True

	# Logging
	LOG_DIRECTORY: str = 'logs'
	LOG_CONSOLE_LEVEL: str = 'INFO'
	LOG_FILE_LEVEL: str = 'DEBUG'

	# Scheduler
	SCHEDULER_TICK_SECONDS: float = Field(default=5.0, gt=0)
	FETCH_TIMEOUT_SECONDS: float = Field(default=20.0, gt=0)
	MIN_BACKOFF_SECONDS: float = Field(default=30.0, gt=0)
	BACKOFF_FACTOR: float = Field(default=0.5, gt=0, le=1)
	DOWNLOAD_ATTEMPTS: int = Field(default=2, ge=1)
	RETENTION_DAYS: int | None = Field(default=400, ge=1)

	# Queries
	ALLOW_INVERSE_RATES: bool = True
	MAX_CHAIN_HOPS: int = Field(default=4, ge=1)
	KNOWN_CURRENCIES: list[str] = []

	FRB: FeedSettings = FeedSettings(
		url='https://www.federalreserve.gov/feeds/h10.xml',
		refresh_interval=24 * 60 * 60,
		priority=10,
		rate_type='FRB',
	)
	MARKET: FeedSettings = FeedSettings(
		url='https://finance.yahoo.com/webservice/v1/symbols/allcurrencies/quote?format=json',
		refresh_interval=5 * 60,
		priority=5,
		rate_type='MARKET',
	)

	model_config = SettingsConfigDict(
		env_file='.env', env_nested_delimiter='__', case_sensitive=False, extra='ignore'
	)

	@field_validator('KNOWN_CURRENCIES')
	@classmethod
	def uppercase_currencies(cls, v: list[str]):
		return [code.strip().upper() for code in v if code.strip()]

	def feeds(self) -> dict[str, FeedSettings]:
		return {'FRB': self.FRB, 'MARKET': self.MARKET}


@lru_cache
def get_settings() -> Settings:
	return Settings()
