"""CLI commands.

Every command loads the configuration, makes one call into
``scw_provisioner.config`` and renders the result. ``_Session.failures``
turns library errors into a report on stderr and exit code 1; exit code 2
means "changes pending" for ``plan`` and "drift found" for ``drift``.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from scw_provisioner.cli import app
from scw_provisioner.cli.errors import handle_error
from scw_provisioner.cli.formatting import (
    format_apply_summary,
    format_changes,
    format_plan,
    format_plan_summary,
    styler,
)
from scw_provisioner.engine.engine import DEFAULT_PARALLELISM
from scw_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Iterator

    from scw_provisioner.config.schema import Config
    from scw_provisioner.core.state import ResourceInstance
    from scw_provisioner.engine.types import ApplyResult, Plan

DEFAULT_CONFIG = Path("scw-provisioner.yaml")
EXIT_PENDING = 2

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]
NoColor = Annotated[bool, typer.Option("--no-color", help="Disable colored output.")]
AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", "-y", help="Skip interactive approval."),
]
NoRefresh = Annotated[
    bool,
    typer.Option("--no-refresh", help="Plan against the state file without reading Scaleway."),
]
Parallelism = Annotated[
    int,
    typer.Option(
        "--parallelism", "-p", min=1, help="Maximum number of Scaleway objects changed at once."
    ),
]


def _check_address(value: str) -> str:
    resource_type, _, name = value.partition(".")
    if not resource_type or not name:
        raise typer.BadParameter(f"expected <resource_type>.<name>, got {value!r}")
    return value


@dataclass
class _Session:
    """Per-invocation settings shared by all commands."""

    config_path: Path
    no_color: bool = False

    @property
    def color(self) -> bool:
        return not (self.no_color or os.environ.get("NO_COLOR"))

    @cached_property
    def config(self) -> Config:
        from scw_provisioner.config import load

        return load(self.config_path)

    @contextmanager
    def failures(self) -> Iterator[None]:
        try:
            yield
        except (typer.Exit, typer.Abort):
            raise
        except Exception as exc:
            raise typer.Exit(handle_error(exc, color=self.color)) from exc

    def say(self, text: str = "", **style: object) -> None:
        typer.echo(styler(self.color)(text, **style) if style else text)

    def confirm(self, question: str, *, canceled: str, auto_approve: bool) -> None:
        """Ask *question*; a refusal (or closed stdin) exits with code 1."""
        if auto_approve:
            return
        try:
            approved = typer.confirm(question)
        except typer.Abort:
            approved = False
        if not approved:
            typer.echo(canceled, err=True)
            raise typer.Exit(1)

    def show_plan(self, plan_obj: Plan) -> None:
        self.say(format_plan(plan_obj, color=self.color))
        self.say()
        self.say(format_plan_summary(plan_obj.summary(), color=self.color))

    def apply(self, plan_obj: Plan, *, parallelism: int) -> ApplyResult:
        """Apply with live per-resource progress.

        When the run fails or is interrupted, the objects whose operation did
        not finish are listed, since their remote state is not known.
        """
        from scw_provisioner.cli.progress import ApplyReporter
        from scw_provisioner.config import apply

        total = sum(1 for c in plan_obj.changes if c.action != Action.NOOP)
        reporter = ApplyReporter(total, color=self.color)
        try:
            with reporter:
                return apply(plan_obj, self.config, progress=reporter, parallelism=parallelism)
        finally:
            if reporter.unfinished:
                typer.echo("Did not finish:", err=True)
                for line in reporter.unfinished_lines():
                    typer.echo(line, err=True)


def _apply_plan(
    session: _Session,
    plan_obj: Plan,
    *,
    question: str,
    nothing_to_do: str,
    auto_approve: bool,
    parallelism: int,
) -> None:
    if not plan_obj.has_changes():
        session.say(nothing_to_do)
        return
    session.show_plan(plan_obj)
    session.say()
    session.confirm(question, canceled="Apply canceled.", auto_approve=auto_approve)
    with session.failures():
        result = session.apply(plan_obj, parallelism=parallelism)
    session.say()
    session.say(format_apply_summary(result.summary(), color=session.color))


@app.command()
def plan(
    config: ConfigPath = DEFAULT_CONFIG,
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Write the plan to this file for a later apply."),
    ] = None,
    destroy: Annotated[
        bool, typer.Option("--destroy", help="Plan the removal of every tracked object.")
    ] = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
) -> None:
    """Show what apply would change. Exits 2 when changes are pending."""
    from scw_provisioner.config import plan as plan_fn

    session = _Session(config, no_color)
    with session.failures():
        plan_obj = plan_fn(session.config, destroy=destroy, refresh=not no_refresh)
        session.show_plan(plan_obj)
        if out is not None:
            plan_obj.save(out)
            session.say(f"\nPlan saved to {out}. Apply it with `scw-provisioner apply {out}`.")

    if plan_obj.has_changes():
        raise typer.Exit(EXIT_PENDING)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Plan written by `plan --out`; planned afresh when omitted."),
    ] = None,
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    no_refresh: NoRefresh = False,
    parallelism: Parallelism = DEFAULT_PARALLELISM,
) -> None:
    """Create, update and replace Scaleway objects to match the configuration."""
    from scw_provisioner.config import plan as plan_fn
    from scw_provisioner.engine.types import Plan

    session = _Session(config, no_color)
    with session.failures():
        if plan_file is not None:
            plan_obj = Plan.load(plan_file)
        else:
            plan_obj = plan_fn(session.config, refresh=not no_refresh)

    _apply_plan(
        session,
        plan_obj,
        question="Do you want to apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
        auto_approve=auto_approve,
        parallelism=parallelism,
    )


@app.command()
def destroy(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
    parallelism: Parallelism = DEFAULT_PARALLELISM,
) -> None:
    """Delete every Scaleway object tracked in the state file."""
    from scw_provisioner.config import plan as plan_fn

    session = _Session(config, no_color)
    with session.failures():
        plan_obj = plan_fn(session.config, destroy=True)

    _apply_plan(
        session,
        plan_obj,
        question=f"Delete every object tracked in {session.config.state_path}?",
        nothing_to_do="No resources to destroy.",
        auto_approve=auto_approve,
        parallelism=parallelism,
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = DEFAULT_CONFIG,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Re-read tracked objects from Scaleway and record what changed."""
    from scw_provisioner.cli.formatting import changes_summary
    from scw_provisioner.config import refresh as refresh_fn
    from scw_provisioner.config import save_state

    session = _Session(config, no_color)
    with session.failures():
        changes, state = refresh_fn(session.config)

    if not changes:
        session.say("No changes. State is up-to-date with Scaleway.")
        return

    session.say(format_changes(changes, color=session.color))
    session.say()
    summary = changes_summary(changes)
    session.say(format_plan_summary(summary, color=session.color, header="Refresh"))
    session.say()
    session.confirm(
        f"Write these changes to {session.config.state_path}?",
        canceled="Refresh canceled.",
        auto_approve=auto_approve,
    )
    with session.failures():
        save_state(session.config, state)
    count = len(state.resources)
    session.say(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def drift(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Compare the state file with Scaleway. Exits 2 when they differ."""
    from scw_provisioner.config import drift as drift_fn

    session = _Session(config, no_color)
    with session.failures():
        changes = drift_fn(session.config)

    if not changes:
        session.say("No drift detected. State is up-to-date with Scaleway.")
        return
    session.say("Drift detected:\n")
    session.say(format_changes(changes, color=session.color))
    raise typer.Exit(EXIT_PENDING)


def _write_only_settings(inst: ResourceInstance) -> list[str]:
    from scw_provisioner.config.registry import default_registry
    from scw_provisioner.resources.markers import local_only_fields

    model = default_registry().get(inst.resource_type).model
    return sorted(
        f for f in local_only_fields(model) - {"timeouts"} if inst.attributes.get(f) is None
    )


@app.command(name="import")
def import_cmd(
    address: Annotated[
        str,
        typer.Argument(
            help="Address in the configuration, e.g. scaleway_rdb_user.alice",
            callback=_check_address,
        ),
    ],
    resource_id: Annotated[
        str,
        typer.Argument(help="Scaleway identifier, e.g. fr-par/<instance uuid>/alice"),
    ],
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Start tracking an object that already exists on Scaleway."""
    from scw_provisioner.cli.formatting import format_instance
    from scw_provisioner.config import import_resource

    session = _Session(config, no_color)
    resource_type, _, name = address.partition(".")
    with session.failures():
        inst = import_resource(session.config, resource_type, name, resource_id)
        unknown = _write_only_settings(inst)

    session.say(f"Imported {inst.id} as {inst.address}.", fg="green")
    session.say()
    session.say(format_instance(inst, color=session.color))
    if unknown:
        session.say()
        session.say(
            f"Scaleway does not return {', '.join(unknown)}; "
            "the next apply takes them from the configuration."
        )


@app.command()
def validate(
    config: ConfigPath = DEFAULT_CONFIG,
    no_color: NoColor = False,
) -> None:
    """Check the configuration and its references without calling Scaleway."""
    from scw_provisioner.config import plan as plan_fn

    session = _Session(config, no_color)
    with session.failures():
        plan_fn(session.config, refresh=False)
    session.say("Configuration is valid.", fg="green")
