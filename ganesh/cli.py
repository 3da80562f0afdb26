"""
Ganesh CLI — entry point for operator tasks.

Usage:
    ganesh resolve REF          # Resolve a secret reference and print the value
    ganesh vault init           # Create a new vault
    ganesh vault unlock         # Check that the vault unlocks
    ganesh vault list           # List secret paths
    ganesh vault store PATH     # Store a secret read from stdin
    ganesh policy check CMD     # Evaluate a command against the policy
    ganesh audit                # Show today's policy decisions
    ganesh totp code|verify     # One-time codes for the vault
    ganesh scan FILE...         # Look for plaintext secrets in config files
    ganesh version              # Show version
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

EXIT_BY_DECISION = {"allow": 0, "deny": 1, "ask": 2}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ganesh",
        description="Ganesh — secret references, a tiered vault, and a command policy gate.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # resolve
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a secret reference")
    resolve_parser.add_argument("ref", help="[backend:]path[#field]")
    resolve_parser.add_argument(
        "--backend", help="Default backend for unprefixed references (default: config)"
    )

    # vault
    vault_parser = subparsers.add_parser("vault", help="Manage the tiered vault")
    vault_parser.add_argument("--path", type=str, help="Vault directory (default: config)")
    vault_sub = vault_parser.add_subparsers(dest="vault_command")
    vault_sub.add_parser("init", help="Create identity, manifest and empty store")
    vault_unlock = vault_sub.add_parser("unlock", help="Verify the vault unlocks")
    vault_unlock.add_argument("--code", help="One-time code (vaults that require one)")
    vault_list = vault_sub.add_parser("list", help="List secret paths")
    vault_list.add_argument("--prefix", help="Only paths starting with this prefix")
    vault_list.add_argument("--code", help="One-time code (vaults that require one)")
    vault_store = vault_sub.add_parser("store", help="Store a secret (value read from stdin)")
    vault_store.add_argument("secret_path")
    vault_store.add_argument("--code", help="One-time code (vaults that require one)")

    # policy
    policy_parser = subparsers.add_parser("policy", help="Command policy gate")
    policy_sub = policy_parser.add_subparsers(dest="policy_command")
    check_parser = policy_sub.add_parser("check", help="Evaluate a command (exit 0/1/2)")
    check_parser.add_argument("shell_command", help="Command string to evaluate")
    check_parser.add_argument("--cwd", help="Working directory")
    check_parser.add_argument("--host", help="Execution host")
    check_parser.add_argument("--agent-id", help="Calling agent")

    # audit
    audit_parser = subparsers.add_parser("audit", help="Show policy gate audit records")
    audit_parser.add_argument("--date", type=date.fromisoformat, help="YYYY-MM-DD (UTC)")
    audit_parser.add_argument("--decision", choices=["allow", "deny", "ask"])
    audit_parser.add_argument("--limit", type=int, default=50)
    audit_parser.add_argument("--stats", action="store_true", help="Counts only")

    # totp
    totp_parser = subparsers.add_parser("totp", help="Vault one-time codes")
    totp_parser.add_argument("--path", type=str, help="Vault directory (default: config)")
    totp_sub = totp_parser.add_subparsers(dest="totp_command")
    totp_sub.add_parser("code", help="Print the current code")
    totp_verify = totp_sub.add_parser("verify", help="Check a code")
    totp_verify.add_argument("code")

    # scan
    scan_parser = subparsers.add_parser("scan", help="Scan files for plaintext secrets")
    scan_parser.add_argument("files", nargs="+", type=Path)

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version or args.command == "version":
        from ganesh import __version__

        print(f"ganesh {__version__}")
        return 0

    if args.command == "resolve":
        return asyncio.run(_cmd_resolve(args))
    elif args.command == "vault":
        return _cmd_vault(args, vault_parser)
    elif args.command == "policy":
        return _cmd_policy(args, policy_parser)
    elif args.command == "audit":
        return _cmd_audit(args)
    elif args.command == "totp":
        return _cmd_totp(args, totp_parser)
    elif args.command == "scan":
        return _cmd_scan(args)
    else:
        parser.print_help()
        return 0


async def _cmd_resolve(args: argparse.Namespace) -> int:
    from ganesh.config import get_config
    from ganesh.secrets import SecretResolver

    cfg = get_config()
    try:
        resolver = SecretResolver(default_backend=args.backend or cfg.default_backend)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    result = await resolver.resolve(args.ref)
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(result.value)
    return 0


def _vault_path(args: argparse.Namespace) -> Path:
    from ganesh.config import get_config

    return Path(args.path).expanduser() if args.path else get_config().vault_path


def _cmd_vault(args: argparse.Namespace, vault_parser: argparse.ArgumentParser) -> int:
    if not args.vault_command:
        vault_parser.print_help()
        return 0
    return asyncio.run(_vault_async(args))


async def _vault_async(args: argparse.Namespace) -> int:
    from ganesh.mfa.totp import provisioning_uri
    from ganesh.secrets.models import GaneshBackendConfig
    from ganesh.vault import GaneshBackend, init_vault
    from ganesh.vault.crypto import AgeError

    path = _vault_path(args)

    if args.vault_command == "init":
        try:
            recipient = await init_vault(path)
        except (AgeError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Vault ready at {path}")
        print(f"Recipient: {recipient}")
        try:
            shared = (path / "totp.key").read_text(encoding="utf-8").strip()
        except OSError:
            return 0
        print(f"One-time codes: {provisioning_uri(shared, name=path.name)}")
        return 0

    backend = GaneshBackend(GaneshBackendConfig(vault_path=path))
    if not await backend.unlock(totp_code=args.code):
        print(f"Error: could not unlock vault at {path}", file=sys.stderr)
        return 1

    if args.vault_command == "unlock":
        print(f"Vault at {path} unlocks ({len(await backend.list())} secrets)")
        return 0

    if args.vault_command == "list":
        for secret_id in await backend.list(args.prefix):
            print(f"[tier {backend.tier_for(secret_id)}] {secret_id}")
        return 0

    if args.vault_command == "store":
        value = sys.stdin.read().rstrip("\n")
        if not value:
            print("Error: empty value on stdin", file=sys.stderr)
            return 1
        if not await backend.store(args.secret_path, value):
            print(f"Error: failed to store {args.secret_path}", file=sys.stderr)
            return 1
        print(f"Stored {args.secret_path}")
        return 0

    return 1


def _cmd_policy(args: argparse.Namespace, policy_parser: argparse.ArgumentParser) -> int:
    from ganesh.policy import PolicyGate

    if args.policy_command != "check":
        policy_parser.print_help()
        return 0

    gate = PolicyGate()
    result = gate.evaluate(
        args.shell_command, cwd=args.cwd, host=args.host, agent_id=args.agent_id
    )
    print(
        json.dumps(
            {
                "decision": str(result.decision),
                "reason": result.reason,
                "matchedRule": result.matched_rule,
                "evaluatedAt": result.evaluated_at,
            },
            indent=2,
        )
    )
    return EXIT_BY_DECISION[result.decision]


def _cmd_audit(args: argparse.Namespace) -> int:
    from ganesh.audit.logger import AuditLog
    from ganesh.config import get_config

    audit = AuditLog(get_config().audit_dir)
    if args.stats:
        print(json.dumps(audit.stats(args.date), indent=2))
        return 0

    records = audit.query(args.date, decision=args.decision, limit=args.limit)
    if not records:
        print("No audit records.")
        return 0
    for r in records:
        rule = f" [{r['matched_rule']}]" if r.get("matched_rule") else ""
        print(f"{r.get('timestamp', '?')}  {r.get('decision', '?'):5}  {r.get('command', '')}{rule}")
    return 0


def _cmd_totp(args: argparse.Namespace, totp_parser: argparse.ArgumentParser) -> int:
    from ganesh.mfa.totp import generate_totp, verify_totp

    if not args.totp_command:
        totp_parser.print_help()
        return 0

    key_path = _vault_path(args) / "totp.key"
    try:
        shared = key_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        print(f"Error: cannot read {key_path}: {e}", file=sys.stderr)
        return 1

    if args.totp_command == "code":
        print(generate_totp(shared))
        return 0

    if verify_totp(shared, args.code):
        print("valid")
        return 0
    print("invalid")
    return 1


def _cmd_scan(args: argparse.Namespace) -> int:
    from ganesh.secrets.scanner import check_ref_usage, scan_file

    findings = []
    warnings: list[str] = []
    for path in args.files:
        findings.extend(scan_file(path))
        warnings.extend(check_ref_usage(path))

    for f in findings:
        print(f"{f.severity.upper():8} {f.file}:{f.line}  {f.pattern}: {f.match}")
    for w in warnings:
        print(f"WARNING  {w}")

    if not findings and not warnings:
        print("No plaintext secrets found.")
        return 0
    return 1 if findings else 0


if __name__ == "__main__":
    sys.exit(main())
