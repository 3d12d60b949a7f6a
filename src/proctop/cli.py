"""Command line entry point for proctop."""

from pathlib import Path

import click

from proctop.models import SortField


def _parse_sort_key(ctx, param, value: str | None) -> SortField | None:
    if value is None:
        return None
    try:
        return SortField.from_name(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from None


def _parse_pids(ctx, param, value: str | None) -> frozenset[int] | None:
    if value is None:
        return None
    try:
        return frozenset(int(part) for part in value.split(",") if part.strip())
    except ValueError:
        raise click.BadParameter(f"expected a comma separated list of pids, got {value!r}") from None


@click.command()
@click.version_option(package_name="proctop")
@click.option("-d", "--delay", type=click.IntRange(min=1), help="Refresh delay in tenths of a second")
@click.option("-s", "--sort-key", callback=_parse_sort_key, help="Column to sort by (see --sort-keys)")
@click.option("-t", "--tree", is_flag=True, help="Start in tree view")
@click.option("-F", "--filter", "filter_text", help="Only show commands containing this text")
@click.option("-p", "--pid", "pids", callback=_parse_pids, help="Only show these pids (comma separated)")
@click.option("-u", "--user", help="Only show processes of this user")
@click.option("-n", "--max-iterations", type=click.IntRange(min=1), help="Exit after this many updates")
@click.option("--readonly", is_flag=True, help="Disable kill and renice")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default ~/.config/proctop/config.toml)",
)
@click.option("--sort-keys", "list_sort_keys", is_flag=True, help="List the valid sort keys and exit")
def main(
    delay: int | None,
    sort_key: SortField | None,
    tree: bool,
    filter_text: str | None,
    pids: frozenset[int] | None,
    user: str | None,
    max_iterations: int | None,
    readonly: bool,
    config_path: Path | None,
    list_sort_keys: bool,
) -> None:
    """Interactive process viewer."""
    if list_sort_keys:
        for field in SortField:
            click.echo(field.value)
        return

    from proctop import log
    from proctop.app import ProcTopApp
    from proctop.config import Config
    from proctop.models import ViewSettings

    try:
        config = Config.load(config_path)
    except ValueError as e:
        raise click.UsageError(str(e)) from None

    if delay is not None:
        config.display.delay = delay

    display = config.display
    field = sort_key or display.sort_field
    settings = ViewSettings(
        sort_field=field,
        sort_descending=display.sort_descending if sort_key is None else field.default_descending,
        tree_view=tree or display.tree_view,
        filter_text=filter_text or None,
        user_filter=user,
        pid_filter=pids,
    )

    log.configure(config)
    log.get_logger(__name__).info(
        "startup",
        delay=display.delay,
        sort_key=field.value,
        tree_view=settings.tree_view,
        readonly=readonly,
    )

    app = ProcTopApp(config, settings, readonly=readonly, max_iterations=max_iterations)
    app.run()


if __name__ == "__main__":
    main()
