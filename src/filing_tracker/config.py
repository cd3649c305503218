"""Application configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import quote_plus


DEFAULT_CIK = "0001067293"
DEFAULT_FIRM_NAME = "Duquesne Family Office LLC"
DEFAULT_SEC_USER_AGENT = "Filing Tracker admin@example.com"


def _resolve_env_file(candidate: str) -> Path | None:
    """Return the first matching environment file path if it exists."""

    path = Path(candidate)
    if path.is_absolute() and path.exists():
        return path

    search_roots = [Path.cwd(), Path(__file__).resolve().parent]
    search_roots.extend(Path(__file__).resolve().parents)

    seen: set[Path] = set()
    for root in search_roots:
        root = root.resolve()
        if root in seen:
            continue
        seen.add(root)
        potential = root / candidate
        if potential.exists():
            return potential
    return None


def _parse_env_file(path: Path) -> dict[str, str]:
    """Parse a dotenv-style file into a mapping."""

    variables: dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        variables[key] = value
    return variables


def _load_profile_env(env: Mapping[str, str]) -> dict[str, str]:
    """Load environment variables from the selected profile file."""

    explicit_file = env.get("FILING_TRACKER_ENV_FILE")
    profile = env.get("FILING_TRACKER_ENV", "local")
    candidates = [explicit_file] if explicit_file else [f".env.{profile}"]

    for candidate in candidates:
        if not candidate:
            continue
        path = _resolve_env_file(candidate)
        if path is not None:
            return _parse_env_file(path)
    return {}


def _build_database_url(env: Mapping[str, str]) -> str | None:
    """Construct a SQLAlchemy URL from discrete environment variables."""

    host = env.get("FILING_TRACKER_DB_HOST")
    if not host:
        return None

    username = env.get("FILING_TRACKER_DB_USERNAME")
    if not username:
        raise RuntimeError(
            "FILING_TRACKER_DB_USERNAME must be set when using discrete database settings"
        )

    if "FILING_TRACKER_DB_PASSWORD" not in env:
        raise RuntimeError(
            "FILING_TRACKER_DB_PASSWORD must be set when using discrete database settings"
        )

    password = env.get("FILING_TRACKER_DB_PASSWORD", "")
    port = env.get("FILING_TRACKER_DB_PORT", "5432")
    database = env.get("FILING_TRACKER_DB_NAME", "filings")
    driver = env.get("FILING_TRACKER_DB_DRIVER", "postgresql+psycopg")

    auth = f"{quote_plus(username)}:{quote_plus(password)}"
    port_part = f":{port}" if port else ""
    return f"{driver}://{auth}@{host}{port_part}/{database}"


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{key} must be an integer, got {raw!r}") from exc


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{key} must be a number, got {raw!r}") from exc


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _split_list(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    chunks = raw.replace("\n", ",").split(",")
    return tuple(chunk.strip() for chunk in chunks if chunk.strip())


@dataclass(frozen=True)
class ResolverSettings:
    """Tuning for the name-based ticker search."""

    match_threshold: float = 0.65
    ticker_boost: float = 0.15
    openfigi_api_key: Optional[str] = None


@dataclass(frozen=True)
class PriceSettings:
    """Retry and lookback policy for end-of-day price lookups."""

    lookback_windows: tuple[int, ...] = (3, 7)
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    # ``None`` keeps negative cache entries until they are invalidated.
    negative_ttl_days: Optional[int] = 7


@dataclass(frozen=True)
class EmailSettings:
    """Outbound SMTP configuration."""

    host: str = "smtp.gmail.com"
    port: int = 465
    username: Optional[str] = None
    password: Optional[str] = None
    starttls: bool = False
    recipients: tuple[str, ...] = ()

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.recipients)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration."""

    database_url: str
    cik: str = DEFAULT_CIK
    firm_name: str = DEFAULT_FIRM_NAME
    sec_user_agent: str = DEFAULT_SEC_USER_AGENT
    http_timeout: float = 10.0
    filing_limit: int = 3
    top_n: Optional[int] = 20
    check_hour: int = 6
    check_minute: int = 0
    check_timezone: str = "UTC"
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    prices: PriceSettings = field(default_factory=PriceSettings)
    email: EmailSettings = field(default_factory=EmailSettings)

    @staticmethod
    def load(env: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from environment variables."""

        base_env = dict(env or os.environ)
        file_env = _load_profile_env(base_env)
        # Environment variables set in the shell take precedence over the file.
        merged_env = {**file_env, **base_env}

        database_url = merged_env.get("FILING_TRACKER_DATABASE_URL")
        if not database_url:
            database_url = _build_database_url(merged_env)
        if not database_url:
            raise RuntimeError(
                "FILING_TRACKER_DATABASE_URL must be set or provide discrete database settings via the env file"
            )

        windows_raw = _split_list(merged_env.get("FILING_TRACKER_PRICE_WINDOWS"))
        try:
            windows = tuple(int(chunk) for chunk in windows_raw) or PriceSettings.lookback_windows
        except ValueError as exc:
            raise RuntimeError(
                "FILING_TRACKER_PRICE_WINDOWS must be a comma separated list of day counts"
            ) from exc

        ttl_raw = merged_env.get("FILING_TRACKER_NEGATIVE_CACHE_TTL_DAYS")
        if ttl_raw is not None and not ttl_raw.strip():
            negative_ttl: Optional[int] = None
        else:
            negative_ttl = _get_int(merged_env, "FILING_TRACKER_NEGATIVE_CACHE_TTL_DAYS", 7)

        top_n: Optional[int] = _get_int(merged_env, "FILING_TRACKER_TOP_N", 20)
        if top_n is not None and top_n <= 0:
            top_n = None

        resolver = ResolverSettings(
            match_threshold=_get_float(merged_env, "FILING_TRACKER_MATCH_THRESHOLD", 0.65),
            ticker_boost=_get_float(merged_env, "FILING_TRACKER_TICKER_BOOST", 0.15),
            openfigi_api_key=merged_env.get("FILING_TRACKER_OPENFIGI_API_KEY") or None,
        )
        prices = PriceSettings(
            lookback_windows=windows,
            max_attempts=max(1, _get_int(merged_env, "FILING_TRACKER_PRICE_ATTEMPTS", 3)),
            backoff_seconds=_get_float(merged_env, "FILING_TRACKER_PRICE_BACKOFF", 0.5),
            negative_ttl_days=negative_ttl,
        )
        email = EmailSettings(
            host=merged_env.get("FILING_TRACKER_SMTP_HOST", "smtp.gmail.com"),
            port=_get_int(merged_env, "FILING_TRACKER_SMTP_PORT", 465),
            username=merged_env.get("FILING_TRACKER_SMTP_USER") or None,
            password=merged_env.get("FILING_TRACKER_SMTP_PASSWORD") or None,
            starttls=_get_bool(merged_env, "FILING_TRACKER_SMTP_STARTTLS", False),
            recipients=_split_list(merged_env.get("FILING_TRACKER_EMAIL_RECIPIENTS")),
        )

        return Settings(
            database_url=database_url,
            cik=merged_env.get("FILING_TRACKER_CIK", DEFAULT_CIK),
            firm_name=merged_env.get("FILING_TRACKER_FIRM_NAME", DEFAULT_FIRM_NAME),
            sec_user_agent=merged_env.get("FILING_TRACKER_SEC_USER_AGENT", DEFAULT_SEC_USER_AGENT),
            http_timeout=_get_float(merged_env, "FILING_TRACKER_HTTP_TIMEOUT", 10.0),
            filing_limit=_get_int(merged_env, "FILING_TRACKER_FILING_LIMIT", 3),
            top_n=top_n,
            check_hour=_get_int(merged_env, "FILING_TRACKER_CHECK_HOUR", 6),
            check_minute=_get_int(merged_env, "FILING_TRACKER_CHECK_MINUTE", 0),
            check_timezone=merged_env.get("FILING_TRACKER_CHECK_TIMEZONE", "UTC"),
            resolver=resolver,
            prices=prices,
            email=email,
        )


__all__ = ["EmailSettings", "PriceSettings", "ResolverSettings", "Settings"]
