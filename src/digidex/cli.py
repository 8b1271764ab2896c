from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer

from digidex.bootstrap import Services, build_services
from digidex.config import AppConfig, load_config
from digidex.errors import DigidexError, NotFound
from digidex.schemas import Item
from digidex.storage import LocalStore, ResponseCache

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

T = TypeVar("T")

app = typer.Typer(help="Digidex CLI")
debug_app = typer.Typer(help="Debug commands")
app.add_typer(debug_app, name="debug")

_CONFIG_HELP = "Config file path (JSON or YAML). Defaults are used when omitted."


@app.command("list")
def list_items(
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """List every item, from memory, the local store or the remote API."""
    items, source = _run(config_path, lambda services: services.repository.fetch_all())
    typer.echo(_render_item_table(items))
    typer.echo(f"source={source} count={len(items)}")


@app.command("search")
def search(
    name: str = typer.Argument(..., help="Case-insensitive name fragment."),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Search items by name."""
    items, source = _run(
        config_path, lambda services: services.repository.fetch_by_name(name)
    )
    typer.echo(_render_item_table(items))
    typer.echo(f"source={source} count={len(items)}")


@app.command("level")
def level(
    value: str = typer.Argument(..., help="Level to filter by, e.g. Rookie."),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """List items of one level (always remote)."""
    items, source = _run(
        config_path, lambda services: services.repository.fetch_by_level(value)
    )
    typer.echo(_render_item_table(items))
    typer.echo(f"source={source} count={len(items)}")


@app.command("refresh")
def refresh(
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Bypass every cache and reload the catalogue from the remote API."""
    items, source = _run(config_path, lambda services: services.repository.refresh_data())
    typer.echo(f"refreshed count={len(items)} source={source}")


@app.command("image")
def image(
    name: str = typer.Argument(..., help="Exact item name (case-insensitive)."),
    out: Path = typer.Option(..., "--out", help="Where to write the PNG.", dir_okay=False),
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Resolve one item's image through the image cache and save it."""

    async def _resolve(services: Services) -> bool:
        item = _find_item(await services.repository.fetch_all(), name)
        resolved = await services.repository.get_image(item)
        if resolved is None:
            return False
        out.parent.mkdir(parents=True, exist_ok=True)
        resolved.save(out, format="PNG")
        return True

    saved, _ = _run(config_path, _resolve)
    if not saved:
        typer.echo(f"no image available for {name}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"saved {out}")


@app.command("clear")
def clear(
    config_path: Path | None = typer.Option(None, "--config", help=_CONFIG_HELP),
) -> None:
    """Delete stored items, stored images and the image response cache."""

    async def _clear(services: Services) -> None:
        await services.store.clear_all()
        await services.image_cache.clear()

    _run(config_path, _clear)
    typer.echo("cleared")


@debug_app.command("storage")
def debug_storage(
    db_path: Path = typer.Option(
        Path("data/storage/digidex.db"),
        "--db-path",
        help="SQLite DB file path.",
    ),
    cache_dir: Path = typer.Option(
        Path("data/cache/images"),
        "--cache-dir",
        help="Image response cache directory.",
    ),
) -> None:
    """Run storage smoke test."""
    store = LocalStore(db_path, db_path.parent / "images", download_images=False)
    cache = ResponseCache(cache_dir)

    cache_key = "debug:storage"
    cache_value = b"smoke_ok"
    cache.store(cache_key, cache_value, ttl_seconds=60)
    cached_value = cache.get(cache_key)

    sample = Item(name="Debugmon", img="https://example.com/debugmon.jpg", level="Rookie")

    async def _roundtrip() -> list[Item]:
        await store.save_all([sample])
        return await store.fetch_all()

    stored_items = asyncio.run(_roundtrip())

    if cached_value != cache_value or stored_items != [sample]:
        typer.echo("storage smoke test failed", err=True)
        raise typer.Exit(code=1)

    typer.echo("storage ok")


def _run(
    config_path: Path | None, operation: Callable[[Services], Awaitable[T]]
) -> tuple[T, str]:
    config = _load_app_config(config_path)

    async def _main() -> tuple[T, str]:
        services = build_services(config)
        result = await operation(services)
        await services.repository.wait_for_background()
        await services.store.drain()
        source = services.repository.data_source.value
        return result, source.description if source is not None else "-"

    try:
        return asyncio.run(_main())
    except DigidexError as exc:
        typer.secho(f"error[{exc.code}]: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _load_app_config(config_path: Path | None) -> AppConfig:
    if config_path is None:
        return AppConfig()
    try:
        return load_config(config_path)
    except (OSError, ValueError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _find_item(items: list[Item], name: str) -> Item:
    wanted = name.strip().lower()
    for item in items:
        if item.name.lower() == wanted:
            return item
    raise NotFound(f"no item named {name!r}")


def _render_item_table(items: list[Item]) -> str:
    if not items:
        return "no items found"

    headers = ("#", "name", "level")
    rows = [
        (str(index), item.name, item.level) for index, item in enumerate(items, start=1)
    ]
    widths = [
        max(len(headers[column]), *(len(row[column]) for row in rows))
        for column in range(len(headers))
    ]

    def _line(values: tuple[str, str, str]) -> str:
        return " | ".join(value.ljust(widths[index]) for index, value in enumerate(values))

    separator = "-+-".join("-" * width for width in widths)
    return "\n".join([_line(headers), separator, *(_line(row) for row in rows)])


def main() -> None:
    app()


if __name__ == "__main__":
    main()
