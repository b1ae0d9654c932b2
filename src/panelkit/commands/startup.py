"""Startup reconciliation command for panelkit."""

import click

from panelkit.access import root_only
from panelkit.errors import PanelKitError
from panelkit.output import OutputFormatter
from panelkit.services.startup_service import StartupService


@click.command("init")
@click.pass_context
@root_only
def init(ctx: click.Context) -> None:
    """Recover persisted state after a daemon restart.

    Resets the SystemStatus flag to Free, fails cron job and snapshot
    records left in progress by the previous process, and creates the
    backup and compose directories. Run this before the daemon starts
    serving requests.

    Example:

        panelkit init
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        service = StartupService()
        settings = service.run()
    except PanelKitError as e:
        formatter.error(code=e.code, message=e.message, suggestion=e.suggestion)
        raise SystemExit(1)

    formatter.status_panel(
        "Startup Reconciliation",
        {
            "settings": settings.to_dict(),
            "cronjob_records": {"failed": service.report["cronjob_records"]},
            "snapshots": {
                key: value
                for key, value in service.report["snapshots"].items()
                if key != "status_updates"
            },
        },
        message="Startup reconciliation completed",
    )
