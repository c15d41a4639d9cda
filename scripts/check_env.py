"""Pre-flight check for a deployment's ``.env`` file.

``check`` loads the settings, builds the credential cipher and the OAuth state
signer exactly as the API does, and prints which platforms have client
credentials. ``record`` and ``verify`` additionally keep a SHA256 baseline of
the file so drift (a stray edit, a rotated encryption key) is caught before a
restart makes stored credentials unreadable.

    python -m scripts.check_env check --env-file /opt/syndicate/.env
    python -m scripts.check_env record --env-file /opt/syndicate/.env \
        --hash-file /opt/syndicate/.env.sha256
    python -m scripts.check_env verify --env-file /opt/syndicate/.env \
        --hash-file /opt/syndicate/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Dict

from pydantic import ValidationError

from syndicate.clients.oauth import OAuthStateSigner
from syndicate.core.config import AppSettings, load_env_file
from syndicate.core.errors import ConfigurationError
from syndicate.services.platform_registry import all_adapters
from syndicate.services.token_cipher import TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_CONFIGURATION_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def load_settings(env_file: Path) -> AppSettings:
    """Load ``env_file`` and fail the same way the API would at startup."""
    if not env_file.is_file():
        raise FileNotFoundError(f"Environment file {env_file} does not exist.")
    load_env_file(str(env_file))
    settings = AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]
    TokenCipherService(key_hex=settings.security.token_encryption_key)
    OAuthStateSigner(
        settings.security.oauth_state_secret or "",
        ttl_seconds=settings.oauth.state_ttl_seconds,
    )
    return settings


def platform_readiness(settings: AppSettings) -> Dict[str, bool]:
    """Map each platform to whether its provider client id and secret are set."""
    readiness = {}
    for adapter in all_adapters():
        client_id, client_secret = settings.providers.client_pair(adapter.provider_family)
        readiness[adapter.platform_id.value] = bool(client_id and client_secret)
    return readiness


def file_digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _report(settings: AppSettings) -> None:
    for platform_id, ready in sorted(platform_readiness(settings).items()):
        print(f"  {platform_id:<10} {'ready' if ready else 'missing client credentials'}")


def _record(env_file: Path, hash_file: Path) -> int:
    digest = file_digest(env_file)
    hash_file.write_text(f"{digest}\n", encoding="utf-8")
    print(f"Baseline {digest} written to {hash_file}")
    return EXIT_OK


def _verify(env_file: Path, hash_file: Path) -> int:
    if not hash_file.is_file():
        print(
            f"No baseline at {hash_file}; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR
    baseline = hash_file.read_text(encoding="utf-8").strip()
    current = file_digest(env_file)
    if baseline != current:
        print(
            f"{env_file} changed since the baseline was recorded "
            f"(baseline {baseline}, now {current}).",
            file=sys.stderr,
        )
        return EXIT_CHECKSUM_ERROR
    print("Environment file matches its baseline.")
    return EXIT_OK


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate settings and detect .env drift.")
    commands = parser.add_subparsers(dest="command", required=True)
    for name, help_text, needs_hash in (
        ("check", "Validate settings and list platform readiness.", False),
        ("record", "Validate settings and write the checksum baseline.", True),
        ("verify", "Validate settings and compare against the baseline.", True),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("--env-file", type=Path, default=Path(".env"))
        if needs_hash:
            sub.add_argument("--hash-file", type=Path, required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(f"Invalid settings:\n{exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    if args.command == "check":
        print("Settings OK.")
        _report(settings)
        return EXIT_OK
    if args.command == "record":
        return _record(args.env_file, args.hash_file)
    return _verify(args.env_file, args.hash_file)


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
