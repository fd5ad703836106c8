"""
Operator command line for the settlement orchestrator.

Configuration comes from ``SETTLE_*`` environment variables.
"""
import json
import logging
import sys
import threading
from typing import Any, Optional

import typer

from .app import Application, build_application
from .config import Settings
from .exceptions import NotFoundError, SettlementError
from .orchestrator import Scheduler
from .version import __version__

app = typer.Typer(help="Settle payment claims and record their attestations.", no_args_is_help=True)


def should_use_color() -> bool:
    """Color output only when writing to a terminal"""
    return sys.stdout.isatty()


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _fail(message: str, code: int = 1) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED if should_use_color() else None, err=True)
    raise typer.Exit(code=code)


def _build() -> Application:
    try:
        return build_application(Settings.from_env())
    except SettlementError as e:
        _fail(str(e), code=2)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version():
    """Print the package version"""
    typer.echo(__version__)


@app.command()
def process():
    """Run one processing tick now"""
    application = _build()
    try:
        _echo_json(application.orchestrator.trigger_processing())
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command()
def pending():
    """List the intents and sessions waiting to be processed"""
    application = _build()
    try:
        items = application.pending.items()
        _echo_json({
            "isProcessing": application.orchestrator.get_processing_status()["isProcessing"],
            "pending": [{"kind": kind, "ref": ref} for kind, ref in items],
        })
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command()
def status(claim_id: str = typer.Argument(..., help="Claim id")):
    """Show a claim with its intents and companion sessions"""
    application = _build()
    try:
        claim = application.store.get_claim(claim_id)
        intents = application.store.list_intents(claim_id)
        sessions = application.store.list_sessions(claim_id)
        _echo_json({
            "claim": claim.model_dump(mode="json"),
            "intents": [i.model_dump(mode="json", exclude={"last_status_payload"}) for i in intents],
            "sessions": [s.model_dump(mode="json", exclude={"encrypted_key"}) for s in sessions],
        })
    except NotFoundError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command("attest-retry")
def attest_retry(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Claims to attempt")
):
    """Attest settled claims that are missing an attestation"""
    application = _build()
    try:
        if not application.recorder.configured:
            _fail("attestation ledger is not configured", code=2)
        _echo_json(application.recorder.retry_missing(limit or application.settings.attestation_batch_size))
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command()
def verify(claim_id: str = typer.Argument(..., help="Claim id")):
    """Recompute a claim's commitment and compare it with the ledger"""
    application = _build()
    try:
        result = application.recorder.verify(claim_id)
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()

    if result.verified:
        typer.secho("✓ Commitment matches the ledger", fg=typer.colors.GREEN if should_use_color() else None)
    else:
        typer.secho(f"✗ Not verified: {result.reason}", fg=typer.colors.RED if should_use_color() else None)
    _echo_json(result.model_dump(exclude_none=True))
    if not result.verified:
        raise typer.Exit(code=1)


@app.command()
def cancel(claim_id: str = typer.Argument(..., help="Claim id")):
    """Cancel a claim that has not reached a terminal state"""
    application = _build()
    try:
        claim = application.lock.with_lock(
            f"claim:{claim_id}",
            application.settings.claim_lock_ttl,
            lambda: application.state_machine.cancel(claim_id),
        )
        if not claim:
            _fail(f"claim {claim_id} is being processed, try again")
        typer.echo(f"Claim {claim_id} is now {claim.status.value}")
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command("complete-private-transfer")
def complete_private_transfer(claim_id: str = typer.Argument(..., help="Claim id")):
    """Mark a private claim paid once its privacy transfer has landed"""
    application = _build()
    try:
        claim = application.lock.with_lock(
            f"claim:{claim_id}",
            application.settings.claim_lock_ttl,
            lambda: application.state_machine.complete_private_transfer(claim_id),
        )
        if not claim:
            _fail(f"claim {claim_id} is being processed, try again")
        typer.echo(f"Claim {claim_id} is now {claim.status.value}")
    except SettlementError as e:
        _fail(str(e))
    finally:
        application.close()


@app.command()
def run(
    tick_interval: Optional[float] = typer.Option(None, help="Seconds between processing ticks"),
    attestation_interval: Optional[float] = typer.Option(None, help="Seconds between attestation sweeps")
):
    """Run the processing loop until interrupted"""
    application = _build()
    scheduler = Scheduler(
        application.orchestrator,
        tick_interval=tick_interval,
        attestation_interval=attestation_interval,
    )
    stop_event = threading.Event()
    try:
        scheduler.run_forever(stop_event)
    except KeyboardInterrupt:
        stop_event.set()
        typer.echo("Stopping")
    finally:
        application.close()


if __name__ == "__main__":
    app()
