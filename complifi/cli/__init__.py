"""
complifi/cli/__init__.py

CompliFi CLI — root Click command group.

Registered in pyproject.toml as:

    [project.scripts]
    complifi = "complifi.cli:cli"

Exit codes (shell-scriptable):
    0  Instruction committed / command succeeded
    1  Instruction rejected by the compliance program
    2  Error  (missing file, bad key, substrate failure, bad arguments)
"""

from pathlib import Path
from typing import Optional

import click

from complifi.cli.commands import (
    attest_command,
    events_command,
    init_command,
    init_policy_command,
    keygen_command,
    set_policy_command,
    show_command,
    verify_command,
    violation_command,
)
from complifi.config import ConfigError, EngineConfig
from complifi.logging_config import configure_logging


@click.group()
@click.version_option(package_name="complifi")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML engine config file.",
)
@click.option("--state", "state_path", default=None, help="Account snapshot file.")
@click.option("--events", "event_log_path", default=None, help="Event log (JSONL) file.")
@click.option("--program-id", default=None, help="Program id (deployment instance).")
@click.option("--log-level", default=None, help="Log level, e.g. DEBUG or INFO.")
@click.pass_context
def cli(
    ctx:            click.Context,
    config_path:    Optional[str],
    state_path:     Optional[str],
    event_log_path: Optional[str],
    program_id:     Optional[str],
    log_level:      Optional[str],
) -> None:
    """
    CompliFi — compliance policy verification engine.

    \b
    Commands:
      keygen        Generate an Ed25519 signing key.
      init          Create the compliance state (signer becomes authority).
      init-policy   Create the policy (signer becomes policy authority).
      set-policy    Replace the policy.
      attest        Create or overwrite a wallet's KYC attestation.
      verify        Run a compliance check for a wallet and action.
      violation     Record a violation for a wallet.
      show          Print state, policy or an attestation.
      events        Print and verify the event log.
    """
    try:
        config = EngineConfig.load(Path(config_path) if config_path else None)
    except ConfigError as exc:
        click.echo(f"❌ {exc}", err=True)
        ctx.exit(2)

    if state_path:
        config.state_path = state_path
    if event_log_path:
        config.event_log_path = event_log_path
    if program_id:
        config.program_id = program_id
    if log_level:
        config.log_level = log_level

    configure_logging(config.log_level, config.json_logs)
    ctx.obj = config


cli.add_command(keygen_command)
cli.add_command(init_command)
cli.add_command(init_policy_command)
cli.add_command(set_policy_command)
cli.add_command(attest_command)
cli.add_command(verify_command)
cli.add_command(violation_command)
cli.add_command(show_command)
cli.add_command(events_command)
