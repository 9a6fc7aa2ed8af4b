"""
Deployment Environment Validator

Run before deploying (``ptsa-validate-env``) to check that every credential
the service needs is present and well formed. Also provides
``validate_secret_key()``, which the app calls at startup to warn about a
weak JWT signing key.
"""

import logging
import math
import os
import re
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_HASH_SALT = "default-salt-change-in-production"
ENCRYPTION_KEYS = ("ENCRYPTION_KEY_PII", "ENCRYPTION_KEY_FINANCIAL", "ENCRYPTION_KEY_HEALTH")


@dataclass(frozen=True)
class EnvVariable:
    name: str
    required: bool
    description: str
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    production_only: bool = False


ENV_VARIABLES: tuple[EnvVariable, ...] = (
    EnvVariable("DATABASE_URL", True, "Database connection URL"),
    # Auth provider
    EnvVariable("CLERK_PUBLISHABLE_KEY", True, "Auth provider publishable key", pattern=r"^pk_(test|live)_.+"),
    EnvVariable("CLERK_SECRET_KEY", True, "Auth provider secret key", pattern=r"^sk_(test|live)_.+"),
    EnvVariable("CLERK_WEBHOOK_SECRET", False, "Auth provider webhook secret", pattern=r"^whsec_.+"),
    # Stripe
    EnvVariable("STRIPE_PUBLISHABLE_KEY", True, "Stripe publishable key", pattern=r"^pk_(test|live)_.+"),
    EnvVariable("STRIPE_SECRET_KEY", True, "Stripe secret key", pattern=r"^sk_(test|live)_.+"),
    EnvVariable("STRIPE_WEBHOOK_SECRET", True, "Stripe webhook secret", pattern=r"^whsec_.+"),
    # Encryption keys (32 bytes hex each)
    EnvVariable(
        "ENCRYPTION_KEY_PII", True, "AES-256 key for PII encryption",
        pattern=r"^[a-f0-9]{64}$", min_length=64, production_only=True,
    ),
    EnvVariable(
        "ENCRYPTION_KEY_FINANCIAL", True, "AES-256 key for financial data encryption",
        pattern=r"^[a-f0-9]{64}$", min_length=64, production_only=True,
    ),
    EnvVariable(
        "ENCRYPTION_KEY_HEALTH", True, "AES-256 key for health data encryption",
        pattern=r"^[a-f0-9]{64}$", min_length=64, production_only=True,
    ),
    EnvVariable("HASH_SALT", True, "Salt for key derivation", min_length=32, production_only=True),
    EnvVariable("OPENAI_API_KEY", False, "OpenAI API key for AI features", pattern=r"^sk-.+"),
    EnvVariable("CRON_SECRET", True, "Secret for authenticating cron requests", min_length=32, production_only=True),
    EnvVariable("SESSION_SECRET", True, "Secret for signing session cookies", min_length=32, production_only=True),
)


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _check_variable(variable: EnvVariable, value: str, is_production: bool) -> Optional[str]:
    if variable.pattern and not re.match(variable.pattern, value):
        return f"{variable.name}: Invalid format ({variable.description})"
    if variable.min_length and len(value) < variable.min_length:
        return f"{variable.name}: Too short (min {variable.min_length} chars)"
    if is_production and "test" in value.lower():
        return f"{variable.name}: Contains 'test' - verify this is intentional"
    return None


def validate_environment(
    env: Optional[Mapping[str, str]] = None,
    environment: Optional[str] = None,
) -> ValidationReport:
    """
    Check ``env`` (default ``os.environ``) against ``ENV_VARIABLES``.

    Production-only variables are skipped outside production when unset.
    In production any value containing "test" is an error.
    """
    env = os.environ if env is None else env
    environment = environment or env.get("ENVIRONMENT") or "development"
    is_production = environment == "production"
    report = ValidationReport()

    for variable in ENV_VARIABLES:
        value = env.get(variable.name) or ""
        if not value:
            if not variable.required:
                report.warnings.append(f"{variable.name}: Optional (not set)")
            elif variable.production_only and not is_production:
                report.warnings.append(f"{variable.name}: Production only (skipped)")
            else:
                report.errors.append(f"{variable.name}: Missing ({variable.description})")
            continue

        error = _check_variable(variable, value, is_production)
        if error:
            report.errors.append(error)

    keys = [env.get(name) for name in ENCRYPTION_KEYS]
    if all(keys) and len(set(keys)) < len(keys):
        report.errors.append("Encryption keys must be unique for each data type")

    if env.get("HASH_SALT") == DEFAULT_HASH_SALT:
        report.errors.append("HASH_SALT is using default value - must be changed for production")

    return report


# ============================================================================
# JWT signing key quality
# ============================================================================

# Known weak or demo secret keys that must never be used in production
_KNOWN_WEAK_KEYS: frozenset[str] = frozenset(
    {
        "secret",
        "secret_key",
        "changeme",
        "your-secret-key",
        "supersecret",
        "development",
        "test_secret",
        "password",
        "12345678901234567890123456789012",
    }
)

_MIN_KEY_LENGTH = 32
_MIN_ENTROPY = 3.5
_MIN_DISTINCT_CHARS = 8


def _shannon_entropy(key: str) -> float:
    """Compute Shannon entropy (bits per character) of a string."""
    if not key:
        return 0.0
    counts = Counter(key)
    total = len(key)
    return -sum((c / total) * math.log2(c / total) for c in counts.values())


def validate_secret_key(key: str) -> list[str]:
    """
    Validate SECRET_KEY quality.

    Returns a list of warning strings (empty list = no issues found).
    Never raises; the caller decides whether to continue.
    """
    warnings: list[str] = []

    if not key:
        warnings.append("SECRET_KEY is empty, JWT signing is insecure")
        return warnings

    if len(key) < _MIN_KEY_LENGTH:
        warnings.append(f"SECRET_KEY is only {len(key)} chars (minimum {_MIN_KEY_LENGTH} recommended)")

    if key.lower() in _KNOWN_WEAK_KEYS:
        warnings.append("SECRET_KEY matches a known weak or demo value; rotate it")

    entropy = _shannon_entropy(key)
    if entropy < _MIN_ENTROPY:
        warnings.append(
            f"SECRET_KEY has low entropy ({entropy:.2f} bits/char); use a randomly "
            "generated key (e.g. 'openssl rand -hex 32')"
        )

    if len(set(key)) < _MIN_DISTINCT_CHARS:
        warnings.append(f"SECRET_KEY uses fewer than {_MIN_DISTINCT_CHARS} distinct characters")

    return warnings


KEY_GENERATION_HELP = """
To generate secure values:

  openssl rand -hex 32      # each ENCRYPTION_KEY_*
  openssl rand -base64 32   # HASH_SALT, SESSION_SECRET, CRON_SECRET
"""


def main(argv: Optional[list[str]] = None) -> int:
    environment = (argv or sys.argv[1:] or [None])[0]
    report = validate_environment(environment=environment)

    print(f"Environment: {environment or os.environ.get('ENVIRONMENT') or 'development'}")
    for warning in report.warnings:
        print(f"  - {warning}")

    if report.valid:
        print("All environment variables are valid.")
        return 0

    print(f"Found {len(report.errors)} issue(s):")
    for error in report.errors:
        print(f"  x {error}")
    print(KEY_GENERATION_HELP)
    return 1


if __name__ == "__main__":
    sys.exit(main())
