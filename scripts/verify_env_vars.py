"""
Compare a dotenv file against the settings the app reads.

Usage:
  python scripts/verify_env_vars.py [path/to/.env]
"""
import sys
from pathlib import Path

from dotenv import dotenv_values

from app.config import Settings

# Facebook and Stripe calls raise IntegrationNotConfigured without these.
REQUIRED_IN_PRODUCTION = [
    "DATABASE_URL",
    "SECRET_KEY",
    "FACEBOOK_APP_ID",
    "FACEBOOK_APP_SECRET",
    "FACEBOOK_REDIRECT_URI",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
]


def known_env_vars():
    """All aliases declared on Settings."""
    return sorted(field.alias for field in Settings.model_fields.values() if field.alias)


def verify(env_path):
    values = dotenv_values(env_path)
    known = set(known_env_vars())
    present = {k for k, v in values.items() if v}

    missing = [v for v in REQUIRED_IN_PRODUCTION if v not in present]
    unknown = sorted(set(values) - known)

    print("=== ENV VAR VERIFICATION ===")
    print(f"Settings declare: {len(known)} vars")
    print(f"{env_path} has: {len(values)} vars")
    print("")
    if missing:
        print(f"MISSING REQUIRED ({len(missing)}):")
        for v in missing:
            print(f"  - {v}")
    else:
        print("All required vars are set.")
    print("")
    if unknown:
        print(f"NOT READ BY THE APP ({len(unknown)}):")
        for v in unknown:
            print(f"  - {v}")
    else:
        print("No unknown vars.")
    return not missing


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(".env")
    sys.exit(0 if verify(path) else 1)
