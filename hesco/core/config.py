import os
from dataclasses import dataclass, field
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def make_async_db_url(url: str) -> str:
    """Accepts Railway-style DATABASE_URL and returns sqlalchemy async url."""
    if url.startswith("postgresql+asyncpg://") or url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    raise RuntimeError("Unsupported DATABASE_URL format")


@dataclass(frozen=True)
class Settings:
    bot_token: str
    database_url: str
    scheduler_enabled: bool

    # owner (admin access)
    owner_tg_id: int
    admin_tg_ids: tuple[int, ...] = field(default_factory=tuple)

    # Withdrawals
    # Python weekday of the weekly window: Monday=0 ... Saturday=5
    withdrawal_weekday: int = 5
    withdrawal_tax_rate: Decimal = Decimal("0.15")

    # bounded wait for a single ledger unit of work
    ledger_timeout_seconds: float = 10.0

    scheduler_sleep_seconds: int = 30

    # shown to payers; runtime value lives in app_settings
    mpesa_phone_number: str = "+254116269694"


def _parse_ids(raw: str) -> tuple[int, ...]:
    return tuple(int(x.strip()) for x in raw.split(",") if x.strip().isdigit())


def _load_settings() -> Settings:
    bot_token = (os.getenv("BOT_TOKEN") or "").strip()
    if not bot_token:
        raise RuntimeError("BOT_TOKEN is missing")

    database_url_raw = os.getenv("DATABASE_URL", "").strip()
    if not database_url_raw:
        raise RuntimeError("DATABASE_URL is missing")

    owner_raw = os.getenv("OWNER_TG_ID", "").strip()
    if not owner_raw.isdigit():
        raise RuntimeError("OWNER_TG_ID is missing or invalid (must be digits)")
    owner_tg_id = int(owner_raw)

    weekday = int(os.getenv("WITHDRAWAL_WEEKDAY", "5"))
    if not 0 <= weekday <= 6:
        raise RuntimeError("WITHDRAWAL_WEEKDAY must be 0..6 (Monday=0)")

    return Settings(
        bot_token=bot_token,
        database_url=make_async_db_url(database_url_raw),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        owner_tg_id=owner_tg_id,
        admin_tg_ids=_parse_ids(os.getenv("ADMIN_TG_IDS", "")),

        # Withdrawals
        withdrawal_weekday=weekday,
        withdrawal_tax_rate=Decimal(os.getenv("WITHDRAWAL_TAX_RATE", "0.15").strip()),

        ledger_timeout_seconds=float(os.getenv("LEDGER_TIMEOUT_SECONDS", "10")),
        scheduler_sleep_seconds=int(os.getenv("SCHEDULER_SLEEP_SECONDS", "30")),
        mpesa_phone_number=(os.getenv("MPESA_PHONE_NUMBER") or "+254116269694").strip(),
    )


settings = _load_settings()
