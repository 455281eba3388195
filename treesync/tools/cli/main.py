"""
Entry point of `treesync` CLI.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import dotenv
from click.exceptions import BadParameter
from pydantic import ValidationError
from typer import Argument, Context, Exit, Option

from ...core import (
    FileLocalStore,
    PersistOptions,
    RemoteUnavailableError,
    StateTree,
    TreePersistence,
)
from ..config import Config
from ._utils import (
    MainTyper,
    console,
    get_root_context,
    logger,
    lookup_param,
    render_tree,
)

app = MainTyper(
    "treesync",
    help="Inspect and synchronize persisted state trees",
)


@app.callback()
def main(
    ctx: Context,
    config_file: Path = Option(
        "treesync.yaml",
        "--config",
        help=".yaml file containing local folder, remote and trees",
        envvar="TREESYNC_CONFIG",
        dir_okay=False,
    ),
    verbose: bool = Option(False, "--verbose", "-v", help="Log debug messages"),
):
    # Load environment variables from .env file if it exists
    dotenv.load_dotenv(Path(".env").resolve(), override=True)

    if verbose:
        logger.setLevel(logging.DEBUG)

    ctx.obj = RootContext.from_config(ctx=ctx, config_file=config_file)


@app.command()
def show(
    ctx: Context,
    key: str = Argument(help="Key of local snapshot"),
):
    """
    Show local snapshot with its modified markers
    """
    root_context = get_root_context(ctx)
    store = FileLocalStore(root_context.config.local_dir)

    try:
        raw = store.read(key)
    except ValueError as e:
        raise BadParameter(str(e), ctx=ctx, param=lookup_param(ctx, "key"))

    if raw is None:
        raise BadParameter(
            f"no local snapshot '{key}' in '{store.directory}'",
            ctx=ctx,
            param=lookup_param(ctx, "key"),
        )

    console.print(render_tree(key, json.loads(raw)))


@app.command()
def check(ctx: Context):
    """
    Check remote connection by loading each tree's sync path
    """
    root_context = get_root_context(ctx)
    config = root_context.require_remote()
    assert config.remote is not None

    backend = config.remote.create_backend(logger=logger)

    trees = {
        name: options
        for name, options in config.trees.items()
        if options.remote is not None
    }

    if not trees:
        logger.warning("No trees with remote sync configured")
        return

    for name, options in trees.items():
        assert options.remote is not None
        sync_path = options.remote.resolve_sync_path(backend.uid)

        try:
            snapshot = asyncio.run(backend.load_snapshot(sync_path))
        except RemoteUnavailableError as e:
            logger.error(f"Failed to load '{sync_path}' for tree '{name}': {e}")
            raise Exit(code=1)

        count = len(snapshot) if isinstance(snapshot, dict) else 0
        logger.info(f"Loaded '{sync_path}' for tree '{name}': {count} keys")


@app.command()
def pull(
    ctx: Context,
    tree: str = Argument(help="Name of tree as configured in .yaml"),
    timeout: float = Option(30.0, help="Seconds to wait for remote load"),
):
    """
    Merge remote data of a tree into its local snapshot
    """
    root_context = get_root_context(ctx)
    config = root_context.require_remote()

    options = config.trees.get(tree)
    if options is None:
        raise BadParameter(
            f"tree '{tree}' not found in '{root_context.config_file}'",
            ctx=ctx,
            param=lookup_param(ctx, "tree"),
        )

    if options.local is None or options.remote is None:
        raise BadParameter(
            f"tree '{tree}' needs both local and remote options",
            ctx=ctx,
            param=lookup_param(ctx, "tree"),
        )

    try:
        container = asyncio.run(_pull(config, options, timeout))
    except TimeoutError:
        logger.error(f"Timed out loading remote data of tree '{tree}'")
        raise Exit(code=1)

    logger.info(f"Pulled tree '{tree}' into local snapshot '{options.local}'")
    console.print(render_tree(tree, container.get()))


def run():
    app()


async def _pull(
    config: Config, options: PersistOptions, timeout: float
) -> StateTree:
    container = StateTree()

    persistence = TreePersistence(
        container,
        options,
        config=config.create_persist_config(),
        registry=config.create_registry(logger=logger),
        logger=logger,
    ).start()

    try:
        await asyncio.wait_for(
            persistence.state.loaded_remote.wait(), timeout=timeout
        )
    finally:
        await persistence.close(flush=False)

    return container


@dataclass(kw_only=True)
class RootContext:
    ctx: Context
    config: Config
    config_file: Path

    @classmethod
    def from_config(cls, *, ctx: Context, config_file: Path) -> RootContext:
        # a missing config file means defaults: local only
        if not config_file.exists():
            return RootContext(ctx=ctx, config=Config(), config_file=config_file)

        try:
            config = Config.load_yaml(config_file)
        except (ValueError, ValidationError) as e:
            raise BadParameter(
                f"failed to load config file '{config_file}': {e}",
                ctx=ctx,
                param=lookup_param(ctx, "config_file"),
            )

        return RootContext(ctx=ctx, config=config, config_file=config_file)

    def require_remote(self) -> Config:
        if self.config.remote is None:
            logger.error(f"No remote configured in '{self.config_file}'")
            raise Exit(code=1)
        return self.config


if __name__ == "__main__":
    app()
