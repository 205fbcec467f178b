from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from collections.abc import Sequence
from pathlib import Path

from verichain.canonicalization import canonical_json_dumps, load_json_value
from verichain.hashing import credential_digest
from verichain.issuance import CredentialIssuer
from verichain.models import (
    CredentialRecord,
    RegistryEntry,
    VerificationResult,
    VerificationStatus,
    demo_credential,
)
from verichain.ports.extraction import LiteLLMCredentialExtractor, image_data_url
from verichain.ports.signer import Ed25519Signer
from verichain.search import parse_search_query
from verichain.store import PostgresRegistry, SQLiteRegistry
from verichain.store.base import CredentialRegistry
from verichain.verification import CredentialVerifier

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = ".verichain.db"

_VERIFY_EXIT_CODES = {
    VerificationStatus.VALID: 0,
    VerificationStatus.REVOKED: 2,
    VerificationStatus.NOT_FOUND: 3,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
        _configure_logging(args.log_level)
        return asyncio.run(_run_command(args))
    except Exception as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _configure_logging(level_name: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _run_command(args: argparse.Namespace) -> int:
    command = getattr(args, "command", None)
    if command == "hash":
        return _run_hash(args)
    if command == "canonicalize":
        return _run_canonicalize(args)
    if command == "extract":
        return await _run_extract(args)
    if command not in {"issue", "verify", "revoke", "search"}:
        raise ValueError(f"Unknown command: {command!r}")

    registry = _open_registry(db=args.db, dsn=args.dsn)
    try:
        if command == "issue":
            return await _run_issue(args=args, registry=registry)
        if command == "verify":
            return await _run_verify(args=args, registry=registry)
        if command == "revoke":
            return await _run_revoke(args=args, registry=registry)
        return await _run_search(args=args, registry=registry)
    finally:
        await registry.close()


def _open_registry(*, db: str | None, dsn: str | None) -> CredentialRegistry:
    if dsn is not None:
        if db not in (None, DEFAULT_DB_PATH):
            raise ValueError("Provide either --db or --dsn, not both.")
        return PostgresRegistry(dsn)
    return SQLiteRegistry(db or DEFAULT_DB_PATH)


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _run_hash(args: argparse.Namespace) -> int:
    value = load_json_value(_read_source(args.source))
    print(credential_digest(value))
    return 0


def _run_canonicalize(args: argparse.Namespace) -> int:
    value = load_json_value(_read_source(args.source))
    print(canonical_json_dumps(value))
    return 0


async def _run_issue(args: argparse.Namespace, *, registry: CredentialRegistry) -> int:
    if args.demo:
        record = demo_credential()
    elif args.source is not None:
        record = CredentialRecord.model_validate_json(_read_source(args.source))
    else:
        raise ValueError("Provide a credential JSON source or --demo.")

    if args.key_file is not None:
        signer = Ed25519Signer.from_key_file(args.key_file)
    else:
        logger.warning("No --key-file given; issuing with an ephemeral signing key.")
        signer = Ed25519Signer.generate()

    issuer = CredentialIssuer(registry=registry, signer=signer)
    entry = await issuer.issue(record)
    if args.json_output:
        print(entry.model_dump_json())
    else:
        print(entry.credential_hash)
        print(f"issuer: {entry.wallet_address}")
        print(f"transaction: {entry.transaction_id}")
    return 0


async def _run_verify(args: argparse.Namespace, *, registry: CredentialRegistry) -> int:
    verifier = CredentialVerifier(registry=registry)
    if args.by_hash:
        result = await verifier.verify_hash(args.source)
    else:
        result = await verifier.verify_json(_read_source(args.source))
    _print_verification(result, json_output=args.json_output)
    return _VERIFY_EXIT_CODES[result.status]


async def _run_revoke(args: argparse.Namespace, *, registry: CredentialRegistry) -> int:
    entry = await registry.revoke(args.credential_hash.strip().lower())
    if args.json_output:
        print(entry.model_dump_json())
    else:
        print(f"revoked {entry.credential_hash}")
    return 0


async def _run_search(args: argparse.Namespace, *, registry: CredentialRegistry) -> int:
    search_filter = parse_search_query(args.query, include_revoked=args.include_revoked)
    entries = await registry.search_entries(search_filter)
    if args.json_output:
        print(json.dumps([entry.model_dump(mode="json") for entry in entries]))
        return 0
    if not entries:
        print("No candidates found matching your criteria.")
        return 0
    for entry in entries:
        _print_entry(entry)
    return 0


async def _run_extract(args: argparse.Namespace) -> int:
    image_path = Path(args.image)
    mime_type, _ = mimetypes.guess_type(image_path.name)
    payload = image_data_url(image_path.read_bytes(), mime_type=mime_type or "")
    extractor = LiteLLMCredentialExtractor(model=args.model)
    record = await extractor.extract(payload)
    print(record.model_dump_json(indent=2 if not args.json_output else None))
    return 0


def _print_verification(result: VerificationResult, *, json_output: bool) -> None:
    if json_output:
        print(result.model_dump_json())
        return
    print(f"{result.status.value}: {result.message}")
    print(f"hash: {result.credential_hash}")
    if result.entry is not None:
        _print_entry(result.entry)


def _print_entry(entry: RegistryEntry) -> None:
    revoked = " [revoked]" if entry.is_revoked else ""
    print(
        f"{entry.student_name} | {entry.university_name} | {entry.degree_type} | "
        f"{entry.major} | GPA {entry.gpa} | {entry.graduation_date}{revoked}"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="verichain")
    parser.add_argument(
        "--log-level",
        default="warning",
        choices=("debug", "info", "warning", "error"),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    hash_parser = subparsers.add_parser("hash", help="Print the digest of credential JSON.")
    hash_parser.add_argument("source", help="Path to a JSON file, or - for stdin.")

    canonical_parser = subparsers.add_parser(
        "canonicalize", help="Print the canonical JSON text that gets hashed."
    )
    canonical_parser.add_argument("source", help="Path to a JSON file, or - for stdin.")

    issue_parser = subparsers.add_parser("issue")
    issue_parser.add_argument("source", nargs="?", default=None)
    issue_parser.add_argument("--demo", action="store_true", help="Issue the demo credential.")
    issue_parser.add_argument(
        "--key-file",
        default=None,
        help="File holding the hex-encoded 32-byte Ed25519 signing seed.",
    )
    _add_registry_arguments(issue_parser)
    _add_json_argument(issue_parser)

    verify_parser = subparsers.add_parser("verify")
    verify_parser.add_argument("source", help="Path to a JSON file, - for stdin, or a hash.")
    verify_parser.add_argument(
        "--hash",
        dest="by_hash",
        action="store_true",
        help="Treat SOURCE as a credential hash instead of credential JSON.",
    )
    _add_registry_arguments(verify_parser)
    _add_json_argument(verify_parser)

    revoke_parser = subparsers.add_parser("revoke")
    revoke_parser.add_argument("credential_hash")
    _add_registry_arguments(revoke_parser)
    _add_json_argument(revoke_parser)

    search_parser = subparsers.add_parser("search")
    search_parser.add_argument("query")
    search_parser.add_argument("--include-revoked", action="store_true")
    _add_registry_arguments(search_parser)
    _add_json_argument(search_parser)

    extract_parser = subparsers.add_parser("extract")
    extract_parser.add_argument("image")
    extract_parser.add_argument("--model", default="gemini/gemini-2.5-flash")
    _add_json_argument(extract_parser)

    return parser


def _add_registry_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", default=DEFAULT_DB_PATH)
    parser.add_argument("--dsn", default=None)


def _add_json_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Emit JSON output.",
    )


__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
