#!/usr/bin/env python3
"""
Stealth Notes Command Line Interface.

Commands:
    - keys generate|show|delete: manage the identity's X25519 key pair
    - commit: create a commitment for a recipient (optionally publishing it
      to a JSON event file)
    - scan: replay a JSON event file and store discovered notes
    - notes list|spend|inputs: inspect and close notes
    - serve: start the HTTP API
    - config: show the effective configuration

Usage:
    stealth-notes keys generate [--onchain-id ID]
    stealth-notes commit RECIPIENT_PUBLIC_KEY [--events FILE] [--amount AMT]
    stealth-notes scan --events FILE
    stealth-notes notes list [--all]
    stealth-notes notes spend COMMITMENT
    stealth-notes serve [--host HOST] [--port PORT] [--events FILE]

Private key access asks for the passphrase (STEALTH_PASSPHRASE or a prompt).
"""

import argparse
import getpass
import json
import logging
import os
import sys

from dotenv import load_dotenv

from authentication import PassphraseAuthenticator
from chain_watcher import DepositObserved, InMemoryChainWatcher
from config import ConfigError, StealthConfig
from monitoring.logging import configure_logging
from stealth_exceptions import StealthProtocolError, StorageError
from stealth_wallet import StealthWallet

logger = logging.getLogger("stealth.cli")


def _passphrase_prompt(purpose: str) -> str | None:
    env_value = os.getenv("STEALTH_PASSPHRASE")
    if env_value:
        return env_value
    if not sys.stdin.isatty():
        return None
    try:
        return getpass.getpass(f"Passphrase ({purpose}): ") or None
    except (EOFError, KeyboardInterrupt):
        return None


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_wallet(config: StealthConfig, events_file: str | None = None) -> StealthWallet:
    """Wallet with a passphrase authenticator and an optional replayed event file."""
    watcher = InMemoryChainWatcher()
    if events_file and os.path.exists(events_file):
        watcher = InMemoryChainWatcher.from_file(events_file)
    authenticator = PassphraseAuthenticator(
        _passphrase_prompt, iterations=config.auth_kdf_iterations
    )
    return StealthWallet(config, authenticator=authenticator, watcher=watcher)


# ============================================================
# Commands
# ============================================================

def cmd_keys(args, config: StealthConfig) -> int:
    with build_wallet(config) as wallet:
        if args.keys_command == "generate":
            existed = wallet.key_manager.has_keys()
            result = wallet.generate_and_store_keys(onchain_id=args.onchain_id)
            _print_json({**result, "created": not existed})
            return 0

        if args.keys_command == "show":
            info = wallet.key_manager.get_key_info()
            if info is None:
                print("No keys generated", file=sys.stderr)
                return 1
            _print_json(info.to_dict())
            return 0

        if args.keys_command == "delete":
            if not args.yes:
                print("Refusing to delete keys without --yes (this is irreversible)",
                      file=sys.stderr)
                return 1
            _print_json({"deleted": wallet.delete_keys()})
            return 0

    return 1


def cmd_commit(args, config: StealthConfig) -> int:
    with build_wallet(config) as wallet:
        result = wallet.create_commitment(args.recipient_public_key)

    output = result.to_dict()
    if args.events:
        watcher = InMemoryChainWatcher()
        if os.path.exists(args.events):
            watcher = InMemoryChainWatcher.from_file(args.events)
        leaf_index = args.leaf_index if args.leaf_index is not None else len(watcher)
        block_number = args.block if args.block is not None else watcher.latest_block() + 1
        event = DepositObserved(
            commitment=result.commitment_hex,
            ephemeral_public_key=output["ephemeral_public_key"],
            leaf_index=leaf_index,
            block_number=block_number,
            amount=args.amount,
        )
        watcher.publish(event, deliver=False)
        watcher.to_file(args.events)
        output.update({"leaf_index": leaf_index, "block_number": block_number,
                       "events_file": args.events})

    _print_json(output)
    return 0


def cmd_scan(args, config: StealthConfig) -> int:
    if not os.path.exists(args.events):
        print(f"Event file not found: {args.events}", file=sys.stderr)
        return 1
    with build_wallet(config, events_file=args.events) as wallet:
        report = wallet.scan_once()
        _print_json({**report.to_dict(), "notes": wallet.note_store.get_notes_count()})
    return 0


def cmd_notes(args, config: StealthConfig) -> int:
    with build_wallet(config) as wallet:
        if args.notes_command == "list":
            notes = wallet.list_all_notes() if args.all else wallet.list_available_notes()
            _print_json([
                {**note.to_dict(include_secrets=False),
                 "display": wallet.note_store.format_note_for_display(note)}
                for note in notes
            ])
            return 0

        if args.notes_command == "spend":
            outcome = wallet.mark_spent(args.commitment)
            _print_json({"commitment": args.commitment, "outcome": outcome.value})
            return 0

        if args.notes_command == "inputs":
            _print_json(wallet.prepare_withdrawal_proof_inputs(args.commitment).to_dict())
            return 0

    return 1


def cmd_serve(args, config: StealthConfig) -> int:
    """Start the HTTP API server (Flask development server)."""
    from api import create_app

    host = args.host or os.getenv("HOST", "127.0.0.1")
    port = args.port or int(os.getenv("PORT", 5000))

    wallet = build_wallet(config, events_file=args.events)
    app = create_app(wallet)
    print(f"Starting Stealth Notes API on {host}:{port} (identity={config.identity})",
          file=sys.stderr)
    try:
        app.run(host=host, port=port, debug=args.debug, use_reloader=False)
    finally:
        wallet.close()
    return 0


def cmd_config(args, config: StealthConfig) -> int:
    _print_json(config.to_dict())
    return 0


# ============================================================
# Entry point
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stealth-notes",
        description="Stealth Notes - stealth commitments and note discovery",
    )
    parser.add_argument("--version", "-v", action="version", version="%(prog)s 0.1.0")
    parser.add_argument("--identity", help="Identity namespace (overrides STEALTH_IDENTITY)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keys
    keys_parser = subparsers.add_parser("keys", help="Manage the identity key pair")
    keys_sub = keys_parser.add_subparsers(dest="keys_command", required=True)
    generate = keys_sub.add_parser("generate", help="Generate and store keys (idempotent)")
    generate.add_argument("--onchain-id", help="Link the keys to an on-chain identity")
    keys_sub.add_parser("show", help="Show key metadata")
    delete = keys_sub.add_parser("delete", help="Delete keys irreversibly")
    delete.add_argument("--yes", action="store_true", help="Confirm deletion")

    # commit
    commit = subparsers.add_parser("commit", help="Create a commitment for a recipient")
    commit.add_argument("recipient_public_key", help="Recipient X25519 public key (hex)")
    commit.add_argument("--events", help="Append the deposit to this JSON event file")
    commit.add_argument("--amount", default="0", help="Deposit amount (default: 0)")
    commit.add_argument("--leaf-index", type=int, help="Merkle leaf index")
    commit.add_argument("--block", type=int, help="Block number")

    # scan
    scan = subparsers.add_parser("scan", help="Replay an event file and discover notes")
    scan.add_argument("--events", required=True, help="JSON event file")

    # notes
    notes_parser = subparsers.add_parser("notes", help="Inspect and spend notes")
    notes_sub = notes_parser.add_subparsers(dest="notes_command", required=True)
    list_parser = notes_sub.add_parser("list", help="List notes")
    list_parser.add_argument("--all", action="store_true", help="Include spent notes")
    spend = notes_sub.add_parser("spend", help="Mark a note spent")
    spend.add_argument("commitment")
    inputs = notes_sub.add_parser("inputs", help="Print withdrawal proof inputs")
    inputs.add_argument("commitment")

    # serve
    serve = subparsers.add_parser("serve", help="Start the API server")
    serve.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve.add_argument("--events", help="Serve notes from this JSON event file")

    # config
    subparsers.add_parser("config", help="Show effective configuration")

    return parser


COMMANDS = {
    "keys": cmd_keys,
    "commit": cmd_commit,
    "scan": cmd_scan,
    "notes": cmd_notes,
    "serve": cmd_serve,
    "config": cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 1

    if args.identity:
        os.environ["STEALTH_IDENTITY"] = args.identity

    try:
        config = StealthConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(level=config.log_level, json_output=config.log_format == "json")

    try:
        return COMMANDS[args.command](args, config)
    except StealthProtocolError as e:
        logger.debug("Command failed", extra={"error": e.to_dict()})
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except StorageError as e:
        print(f"Storage error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
