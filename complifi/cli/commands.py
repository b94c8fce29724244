"""
complifi/cli/commands.py

CompliFi CLI commands.

Every mutating command takes --key PATH (PEM Ed25519 private key): the
instruction is signed with that key and events it produces are appended
to the event log signed by the same key.
"""

import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click

from complifi.client import ComplianceClient
from complifi.config import ConfigError, EngineConfig, PolicySpec
from complifi.core.crypto import Ed25519KeyManager
from complifi.core.exceptions import AccountNotFound, LedgerError, ProgramError
from complifi.ledger.accounts import AccountStore
from complifi.ledger.events import EventLog
from complifi.program.processor import ComplianceProgram


# ── Helpers ───────────────────────────────────────────────────────────────────

def _fail(message: str, code: int = 2) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(code)


def _load_key(key_path: str) -> Ed25519KeyManager:
    try:
        return Ed25519KeyManager.from_file(Path(key_path))
    except (FileNotFoundError, ValueError) as exc:
        _fail(str(exc))


def _open_program(
    config: EngineConfig,
    key:    Optional[Ed25519KeyManager] = None,
) -> ComplianceProgram:
    """Open the account store (and, when signing, the event log) from config."""
    store = AccountStore(path=config.state_path)
    if key is not None:
        store.add_sink(EventLog(config.event_log_path, key))
    return ComplianceProgram(store, program_id=config.program_id)


def _client(config: EngineConfig, key_path: str) -> ComplianceClient:
    key = _load_key(key_path)
    return ComplianceClient(_open_program(config, key), key)


def _run(description: str, fn) -> None:
    """Run one submission; map failures to exit codes 1 and 2."""
    try:
        fn()
    except ProgramError as exc:
        _fail(f"{description} rejected: {exc.name} — {exc}", code=1)
    except (LedgerError, ConfigError, ValueError) as exc:
        _fail(f"{description} failed: {exc}")
    click.echo(f"✅ {description}")


key_option = click.option(
    "--key", "key_path",
    required=True,
    type=click.Path(dir_okay=False),
    help="PEM Ed25519 private key used to sign the instruction.",
)


# ── keygen ────────────────────────────────────────────────────────────────────

@click.command(name="keygen")
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file.")
def keygen_command(output: str, force: bool) -> None:
    """Generate an Ed25519 key, write it to OUTPUT, print its identity."""
    path = Path(output)
    if path.exists() and not force:
        _fail(f"{path} already exists (use --force to overwrite)")
    key = Ed25519KeyManager.generate()
    try:
        key.save(path)
    except RuntimeError as exc:
        _fail(str(exc))
    click.echo(key.public_key_hex)


# ── initialize ────────────────────────────────────────────────────────────────

@click.command(name="init")
@key_option
@click.pass_obj
def init_command(config: EngineConfig, key_path: str) -> None:
    """Create the compliance state. The signer becomes its authority."""
    client = _client(config, key_path)
    _run("Compliance state initialized", client.initialize)


@click.command(name="init-policy")
@key_option
@click.pass_obj
def init_policy_command(config: EngineConfig, key_path: str) -> None:
    """Create the policy with safe defaults. The signer becomes its authority."""
    client = _client(config, key_path)
    _run("Compliance policy initialized", client.initialize_policy)


# ── set-policy ────────────────────────────────────────────────────────────────

@click.command(name="set-policy")
@key_option
@click.option(
    "--file", "policy_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML policy file (max_risk_score, require_kyc, allowed_jurisdictions).",
)
@click.option("--max-risk", type=int, default=None, help="Risk score ceiling, 0-100.")
@click.option("--require-kyc/--no-require-kyc", default=None)
@click.option(
    "--jurisdiction", "jurisdictions",
    type=int,
    multiple=True,
    help="Allowed jurisdiction code (repeatable).",
)
@click.pass_obj
def set_policy_command(
    config:        EngineConfig,
    key_path:      str,
    policy_file:   Optional[str],
    max_risk:      Optional[int],
    require_kyc:   Optional[bool],
    jurisdictions: Tuple[int, ...],
) -> None:
    """
    Replace the policy.

    \b
    Examples:
      complifi set-policy --key admin.pem --file policy.yaml
      complifi set-policy --key admin.pem --max-risk 5 --require-kyc --jurisdiction 1
    """
    if policy_file:
        try:
            spec = PolicySpec.from_yaml(Path(policy_file))
        except ConfigError as exc:
            _fail(str(exc))
    else:
        if max_risk is None:
            _fail("either --file or --max-risk is required")
        spec = PolicySpec(
            max_risk_score=        max_risk,
            require_kyc=           bool(require_kyc),
            allowed_jurisdictions= list(jurisdictions),
        )

    client = _client(config, key_path)
    _run(
        "Policy updated",
        lambda: client.set_policy(
            spec.max_risk_score, spec.require_kyc, spec.allowed_jurisdictions,
        ),
    )


# ── attest ────────────────────────────────────────────────────────────────────

@click.command(name="attest")
@key_option
@click.argument("wallet")
@click.option("--verified/--unverified", default=True, show_default=True)
@click.option("--jurisdiction", type=int, required=True, help="Jurisdiction code, 0-79.")
@click.pass_obj
def attest_command(
    config:       EngineConfig,
    key_path:     str,
    wallet:       str,
    verified:     bool,
    jurisdiction: int,
) -> None:
    """Create or overwrite the KYC attestation for WALLET."""
    client = _client(config, key_path)
    _run(
        f"Attestation stored for {wallet[:16]}...",
        lambda: client.attest(wallet, verified, jurisdiction),
    )


# ── verify ────────────────────────────────────────────────────────────────────

@click.command(name="verify")
@key_option
@click.argument("user")
@click.argument("action")
@click.option("--risk-score", type=int, required=True, help="Oracle-supplied score, 0-100.")
@click.option(
    "--record-violation",
    is_flag=True,
    default=False,
    help="Record a violation if the check is rejected.",
)
@click.pass_obj
def verify_command(
    config:           EngineConfig,
    key_path:         str,
    user:             str,
    action:           str,
    risk_score:       int,
    record_violation: bool,
) -> None:
    """Run a compliance check for USER performing ACTION."""
    client = _client(config, key_path)
    try:
        ok = client.check_compliance(
            user, action,
            risk_score=        risk_score,
            record_rejections= record_violation,
        )
    except (LedgerError, ValueError) as exc:
        _fail(f"Verification failed: {exc}")
    if not ok:
        _fail(f"{action} by {user[:16]}... is not compliant", code=1)
    click.echo(f"✅ {action} by {user[:16]}... is compliant")


# ── violation ─────────────────────────────────────────────────────────────────

@click.command(name="violation")
@key_option
@click.argument("user")
@click.argument("reason")
@click.pass_obj
def violation_command(config: EngineConfig, key_path: str, user: str, reason: str) -> None:
    """Record a violation for USER with REASON."""
    client = _client(config, key_path)
    _run("Violation recorded", lambda: client.record_violation(user, reason))


# ── show ──────────────────────────────────────────────────────────────────────

@click.command(name="show")
@click.argument("what", type=click.Choice(["state", "policy", "attestation"]))
@click.argument("wallet", required=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Machine-readable output.")
@click.pass_obj
def show_command(
    config:  EngineConfig,
    what:    str,
    wallet:  Optional[str],
    as_json: bool,
) -> None:
    """Print the state, the policy, or WALLET's attestation."""
    program = _open_program(config)
    try:
        if what == "state":
            record = program.get_state()
        elif what == "policy":
            record = program.get_policy()
        else:
            if not wallet:
                _fail("show attestation requires WALLET")
            record = program.get_attestation(wallet)
    except AccountNotFound:
        _fail(f"No {what} record found")
    except LedgerError as exc:
        _fail(str(exc))

    data = record.to_dict()
    if what == "policy":
        data["allowed_codes"] = record.allowed_codes

    if as_json:
        click.echo(json.dumps(data, indent=2, sort_keys=True))
        return
    for name, value in data.items():
        click.echo(f"  {name:<24} {value}")


# ── events ────────────────────────────────────────────────────────────────────

@click.command(name="events")
@click.option("--verify", "verify_only", is_flag=True, default=False,
              help="Only verify chain and signatures; exit 1 if broken.")
@click.option(
    "--signer", "signers",
    multiple=True,
    help="Trusted signer identity (repeatable). Entries signed by any other key fail.",
)
@click.pass_obj
def events_command(config: EngineConfig, verify_only: bool, signers: Tuple[str, ...]) -> None:
    """Print the event log, or verify its integrity."""
    path = Path(config.event_log_path)
    if not path.exists():
        _fail(f"Event log not found: {path}")

    # Reading needs no signing key: each entry embeds its signer.
    log = EventLog(path, Ed25519KeyManager.generate())
    intact = log.verify_chain(trusted_signers=signers or None)
    if verify_only:
        if not intact:
            _fail("Event log chain is broken", code=1)
        click.echo("✅ Event log intact")
        return

    try:
        entries: List = log.entries()
    except ValueError as exc:
        _fail(str(exc))
    for entry in entries:
        click.echo(
            f"{entry.sequence:>6}  {entry.timestamp}  {entry.event_type:<20} "
            f"{json.dumps(entry.payload, sort_keys=True)}"
        )
    if not intact:
        _fail("Event log chain is broken", code=1)
