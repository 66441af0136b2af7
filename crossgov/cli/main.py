"""
CrossGov CLI

Usage:
    crossgov serve [--host HOST] [--port PORT]
    crossgov publish <proposal_id> [--quorum N] [--threshold N] [--freeze]
    crossgov resume <proposal_id> [--quorum N] [--threshold N]
    crossgov relay [--rescan-from BLOCK] [--once]
    crossgov batch-verify <proposal_id> [--voter ADDRESS ...]
    crossgov action-data (--proposal-id ID | --target ADDR --fn-sig SIG [ARGS...])
    crossgov sign-vote --proposal-id ID --power N --nonce N --deadline T ...

Every command reads crossgov.toml (or --config) plus CROSSGOV_* environment
overrides. Signing keys are only ever read from the environment.
"""

import asyncio
import json
import os
import signal
import time
from typing import Optional

import click

from ..bridge.actions import ActionRegistry, ActionSpec
from ..config import load_config
from ..crypto.address import is_valid_address, to_checksum_address
from ..crypto.typed_data import Eip712Domain, TypedVote, sign_vote
from ..exceptions import ChainBMirrorFailed, CrossGovError
from ..logger import get_logger

logger = get_logger(__name__)

VERSION = "0.1.0"


def _load(config_path: Optional[str]):
    cfg = load_config(config_path)
    try:
        cfg.validate()
    except CrossGovError as exc:
        raise click.ClickException(str(exc))
    return cfg


def _run(coro):
    """Run a coroutine, turning CrossGov errors into clean CLI failures."""
    try:
        return asyncio.run(coro)
    except ChainBMirrorFailed as exc:
        raise click.ClickException(
            f"{exc}\nChain A tx {exc.chain_a_tx or '(unknown)'} stands; "
            f"run `crossgov resume {exc.proposal_id}` to retry the Chain B mirror."
        )
    except CrossGovError as exc:
        raise click.ClickException(str(exc))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


async def _with_service(cfg, action):
    from ..service import GovernanceService

    service = await GovernanceService.from_config(cfg)
    try:
        return await action(service)
    finally:
        await service.close()


config_option = click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to crossgov.toml (default: $CROSSGOV_CONFIG or ./crossgov.toml)",
)


@click.group()
@click.version_option(version=VERSION, prog_name="crossgov")
def cli():
    """CrossGov: off-chain vote aggregation and cross-chain governance relaying."""
    pass


@cli.command("serve")
@config_option
@click.option("--host", default=None, help="Bind address (default: service.host)")
@click.option("--port", type=int, default=None, help="Bind port (default: service.port)")
def serve_cmd(config_path: Optional[str], host: Optional[str], port: Optional[int]):
    """Run the vote HTTP API."""
    import uvicorn

    from ..api import create_app

    cfg = _load(config_path)
    host = host or cfg.service.host
    port = port or cfg.service.port
    logger.info(f"Starting CrossGov API on http://{host}:{port}")
    uvicorn.run(
        create_app(config=cfg),
        host=host,
        port=port,
        reload=False,
        access_log=False,
        log_config=None,
    )


@cli.command("publish")
@click.argument("proposal_id", type=int)
@config_option
@click.option("--quorum", type=int, default=None, help="Quorum (default: governance.quorum)")
@click.option("--threshold", type=int, default=None, help="Threshold (default: governance.threshold)")
@click.option("--freeze", "freeze_first", is_flag=True, help="Freeze the stored votes before publishing")
def publish_cmd(proposal_id: int, config_path: Optional[str], quorum: Optional[int],
                threshold: Optional[int], freeze_first: bool):
    """Publish a frozen root on Chain A and mirror the freeze to Chain B."""
    cfg = _load(config_path)

    async def action(service):
        if freeze_first:
            await service.freeze(proposal_id)
        return await service.publish(proposal_id, quorum, threshold)

    record = _run(_with_service(cfg, action))
    click.secho(f"Proposal #{proposal_id} published on both chains", fg="green")
    _echo_json(record.to_dict())


@cli.command("resume")
@click.argument("proposal_id", type=int)
@config_option
@click.option("--quorum", type=int, default=None)
@click.option("--threshold", type=int, default=None)
def resume_cmd(proposal_id: int, config_path: Optional[str], quorum: Optional[int],
               threshold: Optional[int]):
    """Mirror a root already published on Chain A to Chain B."""
    cfg = _load(config_path)
    record = _run(_with_service(cfg, lambda s: s.resume(proposal_id, quorum, threshold)))
    click.secho(f"Proposal #{proposal_id} mirrored to Chain B", fg="green")
    _echo_json(record.to_dict())


@cli.command("relay")
@config_option
@click.option("--rescan-from", type=int, default=None, help="Replay ProposalPassed events from this block")
@click.option("--once", is_flag=True, help="Poll once, wait for in-flight relays, then exit")
def relay_cmd(config_path: Optional[str], rescan_from: Optional[int], once: bool):
    """Execute passed proposals on Chain A."""
    cfg = _load(config_path)
    actions = ActionRegistry.from_file(cfg.relayer.actions_file)

    async def action(service):
        relayer = service.build_relayer(actions, cfg.relayer)
        if rescan_from is not None:
            await relayer.rescan_from(rescan_from)
        if once:
            await relayer.poll_once()
            await relayer.drain()
            await relayer.shutdown(cfg.relayer.shutdown_grace)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await relayer.run(stop, grace=cfg.relayer.shutdown_grace)

    _run(_with_service(cfg, action))


@cli.command("batch-verify")
@click.argument("proposal_id", type=int)
@config_option
@click.option("--voter", "voters", multiple=True, help="Restrict the batch to these voters (repeatable)")
def batch_verify_cmd(proposal_id: int, config_path: Optional[str], voters):
    """Send stored votes with a multiproof to batchVerifyAndTally on Chain B."""
    cfg = _load(config_path)
    receipt = _run(_with_service(cfg, lambda s: s.batch_verify(proposal_id, list(voters) or None)))
    click.secho(f"batchVerifyAndTally mined in block {receipt.block_number}: {receipt.tx_hash}", fg="green")


@cli.command("action-data")
@click.option("--proposal-id", type=int, default=None, help="Look the action up in the actions file")
@click.option("--actions-file", type=click.Path(dir_okay=False), default=None)
@click.option("--target", default=None, help="Chain A target contract")
@click.option("--fn-sig", default=None, help='Function signature, e.g. "updateUnbondingPeriod(uint256)"')
@click.option("--value", default="0", help="Native value sent with the call (wei)")
@click.argument("args", nargs=-1)
def action_data_cmd(proposal_id: Optional[int], actions_file: Optional[str], target: Optional[str],
                    fn_sig: Optional[str], value: str, args):
    """Print actionData and actionDataHash for a governance action."""
    try:
        if proposal_id is not None:
            path = actions_file or load_config().relayer.actions_file
            spec = ActionRegistry.from_file(path).get(proposal_id)
        else:
            if not target or not fn_sig:
                raise click.UsageError("Give --proposal-id, or --target and --fn-sig")
            if not is_valid_address(target):
                raise click.BadParameter(f"Invalid address: {target}", param_hint="--target")
            spec = ActionSpec.from_call(target, fn_sig, list(args), int(value, 0))
    except CrossGovError as exc:
        raise click.ClickException(str(exc))
    _echo_json(spec.to_dict())


@cli.command("sign-vote")
@config_option
@click.option("--proposal-id", type=int, required=True)
@click.option("--support/--against", default=True, help="Vote for (default) or against")
@click.option("--abstain", is_flag=True, help="Abstain (signed with support=false)")
@click.option("--power", type=int, required=True, help="Power from /api/compute-power")
@click.option("--nonce", type=int, required=True, help="Nonce from /api/nextNonce")
@click.option("--deadline", type=int, default=None, help="Unix expiry (default: now + 1h)")
@click.option("--chain-id", type=int, default=None, help="Chain B id (default: chain_b.chain_id)")
@click.option("--verifier", default=None, help="Chain B VoteVerifier (default: chain_b.verifier)")
def sign_vote_cmd(config_path: Optional[str], proposal_id: int, support: bool, abstain: bool,
                  power: int, nonce: int, deadline: Optional[int], chain_id: Optional[int],
                  verifier: Optional[str]):
    """
    Sign a vote with the key in $CROSSGOV_VOTER_KEY and print the /api/vote body.
    """
    key = os.environ.get("CROSSGOV_VOTER_KEY")
    if not key:
        raise click.ClickException("CROSSGOV_VOTER_KEY is not set")

    if chain_id is None or verifier is None:
        cfg = load_config(config_path)
        chain_id = chain_id if chain_id is not None else cfg.chain_b.chain_id
        verifier = verifier or cfg.chain_b.verifier
    if not chain_id or not verifier or not is_valid_address(verifier):
        raise click.ClickException("Chain B chain id and verifier address are required")

    from eth_account import Account

    voter = Account.from_key(key).address
    if abstain:
        support = False
    deadline = deadline if deadline is not None else int(time.time()) + 3600
    domain = Eip712Domain(chain_id=chain_id, verifying_contract=to_checksum_address(verifier))
    vote = TypedVote(
        proposal_id=proposal_id,
        support=support,
        voter=voter,
        power=power,
        nonce=nonce,
        deadline=deadline,
    )
    _echo_json({
        "proposalId": str(proposal_id),
        "support": support,
        "abstain": abstain,
        "voter": voter,
        "power": str(power),
        "nonce": str(nonce),
        "deadline": str(deadline),
        "signature": sign_vote(key, domain, vote),
    })


def main():
    cli()


if __name__ == "__main__":
    main()
