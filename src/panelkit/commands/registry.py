"""Insecure registry trust commands for panelkit."""

import click

from panelkit.access import root_only
from panelkit.errors import PanelKitError
from panelkit.output import OutputFormatter
from panelkit.services.registry_service import RegistryEndpoint, RegistryTrustService

PROTOCOLS = click.Choice(["http", "https"])


@click.group()
@click.pass_context
def registry(ctx: click.Context) -> None:
    """Manage Docker's insecure-registries trust list.

    Plain-HTTP registries must be trusted in /etc/docker/daemon.json before
    Docker will pull from them. Changing the list restarts Docker and waits
    up to 20 seconds for it to come back.
    """
    pass


@registry.command("list")
@click.pass_context
def registry_list(ctx: click.Context) -> None:
    """List trusted insecure registries.

    Example:

        panelkit registry list
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        hosts = RegistryTrustService().list_hosts()
    except PanelKitError as e:
        formatter.error(code=e.code, message=e.message, suggestion=e.suggestion)
        raise SystemExit(1)

    formatter.table(
        data=[{"host": host} for host in hosts],
        columns=[("host", "Host")],
        title="Insecure Registries",
        message=f"Found {len(hosts)} insecure registr{'y' if len(hosts) == 1 else 'ies'}",
    )


@registry.command("add")
@click.argument("url")
@click.option("--protocol", type=PROTOCOLS, default="http", show_default=True)
@click.pass_context
@root_only
def registry_add(ctx: click.Context, url: str, protocol: str) -> None:
    """Trust a registry reachable at URL.

    Only http registries change daemon.json; https registries are a no-op.

    Example:

        panelkit registry add 192.168.1.10:5000
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        endpoint = RegistryEndpoint.from_record({"download_url": url, "protocol": protocol})
        restarted = RegistryTrustService().create(endpoint)
    except PanelKitError as e:
        formatter.error(code=e.code, message=e.message, suggestion=e.suggestion)
        raise SystemExit(1)

    formatter.success(
        message=f"Registry '{url}' added",
        data={**endpoint.to_dict(), "docker_restarted": restarted},
    )


@registry.command("update")
@click.argument("old_url")
@click.argument("new_url")
@click.option("--old-protocol", type=PROTOCOLS, default="http", show_default=True)
@click.option("--new-protocol", type=PROTOCOLS, default="http", show_default=True)
@click.pass_context
@root_only
def registry_update(
    ctx: click.Context,
    old_url: str,
    new_url: str,
    old_protocol: str,
    new_protocol: str,
) -> None:
    """Replace OLD_URL with NEW_URL, following any protocol change.

    Example:

        panelkit registry update 10.0.0.5:5000 10.0.0.6:5000
        panelkit registry update reg.local reg.local --new-protocol https
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        previous = RegistryEndpoint.from_record({"download_url": old_url, "protocol": old_protocol})
        requested = RegistryEndpoint.from_record({"download_url": new_url, "protocol": new_protocol})
        restarted = RegistryTrustService().update(previous, requested)
    except PanelKitError as e:
        formatter.error(code=e.code, message=e.message, suggestion=e.suggestion)
        raise SystemExit(1)

    formatter.success(
        message=f"Registry '{old_url}' updated to '{new_url}'",
        data={**requested.to_dict(), "docker_restarted": restarted},
    )


@registry.command("remove")
@click.argument("url")
@click.option("--protocol", type=PROTOCOLS, default="http", show_default=True)
@click.pass_context
@root_only
def registry_remove(ctx: click.Context, url: str, protocol: str) -> None:
    """Stop trusting the registry at URL.

    Example:

        panelkit registry remove 192.168.1.10:5000
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        endpoint = RegistryEndpoint.from_record({"download_url": url, "protocol": protocol})
        restarted = RegistryTrustService().delete(endpoint)
    except PanelKitError as e:
        formatter.error(code=e.code, message=e.message, suggestion=e.suggestion)
        raise SystemExit(1)

    formatter.success(
        message=f"Registry '{url}' removed",
        data={**endpoint.to_dict(), "docker_restarted": restarted},
    )
