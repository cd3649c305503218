import pytest

from filing_tracker.config import Settings


def _env(tmp_path, **values):
    env = {"FILING_TRACKER_ENV_FILE": str(tmp_path / "missing.env")}
    env.update(values)
    return env


def test_defaults(tmp_path):
    settings = Settings.load(_env(tmp_path, FILING_TRACKER_DATABASE_URL="sqlite://"))

    assert settings.database_url == "sqlite://"
    assert settings.cik == "0001067293"
    assert settings.top_n == 20
    assert settings.resolver.match_threshold == 0.65
    assert settings.resolver.ticker_boost == 0.15
    assert settings.prices.lookback_windows == (3, 7)
    assert settings.prices.max_attempts == 3
    assert settings.prices.negative_ttl_days == 7
    assert not settings.email.enabled


def test_overrides(tmp_path):
    settings = Settings.load(
        _env(
            tmp_path,
            FILING_TRACKER_DATABASE_URL="sqlite://",
            FILING_TRACKER_TOP_N="0",
            FILING_TRACKER_PRICE_WINDOWS="2, 5,10",
            FILING_TRACKER_NEGATIVE_CACHE_TTL_DAYS="",
            FILING_TRACKER_MATCH_THRESHOLD="0.8",
            FILING_TRACKER_EMAIL_RECIPIENTS="a@example.com, b@example.com",
            FILING_TRACKER_SMTP_STARTTLS="yes",
            FILING_TRACKER_SMTP_PORT="587",
        )
    )

    assert settings.top_n is None
    assert settings.prices.lookback_windows == (2, 5, 10)
    assert settings.prices.negative_ttl_days is None
    assert settings.resolver.match_threshold == 0.8
    assert settings.email.recipients == ("a@example.com", "b@example.com")
    assert settings.email.starttls is True
    assert settings.email.port == 587
    assert settings.email.enabled


def test_missing_database_url(tmp_path):
    with pytest.raises(RuntimeError):
        Settings.load(_env(tmp_path, FILING_TRACKER_CIK="1"))


def test_discrete_database_settings(tmp_path):
    settings = Settings.load(
        _env(
            tmp_path,
            FILING_TRACKER_DB_HOST="db",
            FILING_TRACKER_DB_USERNAME="tracker",
            FILING_TRACKER_DB_PASSWORD="p@ss",
        )
    )

    assert settings.database_url == "postgresql+psycopg://tracker:p%40ss@db:5432/filings"


def test_malformed_number(tmp_path):
    with pytest.raises(RuntimeError):
        Settings.load(_env(tmp_path, FILING_TRACKER_DATABASE_URL="sqlite://", FILING_TRACKER_PRICE_ATTEMPTS="three"))


def test_env_file_values_are_overridden_by_environment(tmp_path):
    env_file = tmp_path / ".env.test"
    env_file.write_text(
        "# profile\n"
        'export FILING_TRACKER_DATABASE_URL="sqlite:///from-file.db"\n'
        "FILING_TRACKER_CIK=111\n"
    )

    settings = Settings.load({"FILING_TRACKER_ENV_FILE": str(env_file), "FILING_TRACKER_CIK": "222"})

    assert settings.database_url == "sqlite:///from-file.db"
    assert settings.cik == "222"
