"""Click CLI for webhook secrets and rate-limit administration."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path

import click
import httpx

from src.audit.logger import validate_audit_chain
from src.models import RateLimitType
from src.ratelimit.limiter import RateLimiter
from src.webhook.signature import SIGNATURE_HEADER, create_signature, generate_webhook_secret

_LIMIT_TYPES = click.Choice([t.value for t in RateLimitType])


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Clawdbot edge guard administration CLI."""
    ctx.ensure_object(dict)


def _limiter(ctx: click.Context) -> RateLimiter:
    if "limiter" not in ctx.obj:
        ctx.obj["limiter"] = RateLimiter.from_env()
    return ctx.obj["limiter"]


@cli.command("generate-secret")
@click.option("--bytes", "num_bytes", default=32, show_default=True, help="Random bytes to draw.")
def generate_secret(num_bytes: int) -> None:
    """Generate a webhook signing secret."""
    secret = generate_webhook_secret(num_bytes)
    click.echo(secret)
    click.echo(f'Add to your environment: CLAWDBOT_WEBHOOK_SECRET="{secret}"', err=True)


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--secret", envvar="CLAWDBOT_WEBHOOK_SECRET", required=True, help="Signing secret.")
def sign(payload_file: str, secret: str) -> None:
    """Print the x-clawdbot-signature value for a payload file."""
    click.echo(create_signature(Path(payload_file).read_bytes(), secret))


@cli.command("send-webhook")
@click.argument("url")
@click.option("--secret", envvar="CLAWDBOT_WEBHOOK_SECRET", required=True, help="Signing secret.")
@click.option("--event-type", default="status.change", show_default=True)
@click.option("--organization-id", default=None, help="Sent as x-organization-id.")
def send_webhook(url: str, secret: str, event_type: str, organization_id: str | None) -> None:
    """POST a freshly timestamped, signed test event to URL."""
    body = json.dumps(
        {"type": event_type, "timestamp": int(time.time() * 1000)},
        separators=(",", ":"),
    ).encode()
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: create_signature(body, secret)}
    if organization_id:
        headers["x-organization-id"] = organization_id

    resp = httpx.post(url, content=body, headers=headers, timeout=10.0)
    click.echo(f"{resp.status_code} {resp.text}")
    for name in ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"):
        if name in resp.headers:
            click.echo(f"{name}: {resp.headers[name]}")
    if resp.status_code >= 400:
        raise click.exceptions.Exit(1)


@cli.command()
@click.argument("identifier")
@click.option("--duration", default=3600, show_default=True, help="Block duration in seconds.")
@click.pass_context
def block(ctx: click.Context, identifier: str, duration: int) -> None:
    """Block an identifier (IP, tenant ID or email)."""
    asyncio.run(_limiter(ctx).block_identifier(identifier, duration))
    click.echo(f"Blocked {identifier} for {duration}s")


@cli.command()
@click.argument("identifier")
@click.pass_context
def unblock(ctx: click.Context, identifier: str) -> None:
    """Remove a block entry."""
    asyncio.run(_limiter(ctx).unblock_identifier(identifier))
    click.echo(f"Unblocked {identifier}")


@cli.command()
@click.argument("limit_type", type=_LIMIT_TYPES)
@click.argument("identifier")
@click.pass_context
def reset(ctx: click.Context, limit_type: str, identifier: str) -> None:
    """Reset the counter for IDENTIFIER under LIMIT_TYPE."""
    asyncio.run(_limiter(ctx).reset(RateLimitType(limit_type), identifier))
    click.echo(f"Reset {limit_type} counter for {identifier}")


@cli.command()
@click.argument("limit_type", type=_LIMIT_TYPES)
@click.argument("identifier")
@click.pass_context
def remaining(ctx: click.Context, limit_type: str, identifier: str) -> None:
    """Show remaining requests without consuming one."""
    limiter = _limiter(ctx)
    policy = limiter.policy(RateLimitType(limit_type))
    left = asyncio.run(limiter.get_remaining(RateLimitType(limit_type), identifier))
    click.echo(json.dumps({
        "type": limit_type,
        "identifier": identifier,
        "remaining": left,
        "limit": policy.requests,
        "windowSeconds": policy.window_seconds,
    }))


@cli.command("verify-audit-log")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
def verify_audit_log(log_path: str) -> None:
    """Check the hash chain of an audit log file."""
    result = validate_audit_chain(Path(log_path))
    if not result.valid:
        click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
        raise click.exceptions.Exit(1)
    click.echo("Audit chain intact")
