import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    root_admin_email: str
    committee_email_domains: tuple[str, ...]
    ical_uid_domain: str

    smtp_server: str
    smtp_port: str
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str

    csrf_enabled: bool
    email_verification_required: bool
    app_url: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _split_domains(raw: str) -> tuple[str, ...]:
    parts = [p.strip().lower().lstrip("@") for p in raw.split(",")]
    return tuple(p for p in parts if p)


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///climbclub.db"),
        root_admin_email=_getenv("ROOT_ADMIN_EMAIL", "admin@climbclub.local").lower(),
        committee_email_domains=_split_domains(_getenv("COMMITTEE_EMAIL_DOMAINS", "")),
        ical_uid_domain=_getenv("ICAL_UID_DOMAIN", "climbclub.local"),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv("SMTP_PORT", ""),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        email_from=_getenv("EMAIL_FROM", ""),
        csrf_enabled=_getenv_bool("CSRF_ENABLED", True),
        # Off by default in the test environment.
        email_verification_required=_getenv_bool("EMAIL_VERIFICATION_REQUIRED", env != "test"),
        app_url=_getenv("APP_URL", "http://localhost:5000").rstrip("/"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "ROOT_ADMIN_EMAIL": s.root_admin_email,
        "COMMITTEE_EMAIL_DOMAINS": s.committee_email_domains,
        "ICAL_UID_DOMAIN": s.ical_uid_domain,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "CSRF_ENABLED": s.csrf_enabled,
        "EMAIL_VERIFICATION_REQUIRED": s.email_verification_required,
        "APP_URL": s.app_url,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Strict",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
