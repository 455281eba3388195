"""
Utilities specific to CLI functionality.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from click import Parameter
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.tree import Tree
from typer import Context, Typer

from ...core.utils import MARKER_KEY, VALUE_KEY, is_wrapped

if TYPE_CHECKING:
    from .main import RootContext


console = Console()

rich_handler = RichHandler(
    console=console,
    rich_tracebacks=True,
    show_level=True,
    show_time=True,
    show_path=False,
)
rich_handler.setFormatter(logging.Formatter("%(message)s"))

logger = logging.getLogger("treesync")
logger.setLevel(logging.INFO)
logger.addHandler(rich_handler)
logger.propagate = False


class MainTyper(Typer):
    """
    Typer app with preconfigured settings.
    """

    def __init__(self, name: str, *, help: str):
        return super().__init__(
            name=name,
            help=help,
            rich_markup_mode="markdown",
            no_args_is_help=True,
            add_completion=False,
        )


def get_root_context(ctx: Context) -> RootContext:
    from .main import RootContext

    root_context = ctx.obj
    assert isinstance(root_context, RootContext)
    return root_context


def lookup_param(ctx: Context, name: str) -> Parameter:
    """
    Lookup param by name.
    """
    param = next((p for p in ctx.command.params if p.name == name), None)
    assert param, f"Could not find param with name: {name}"
    return param


def render_tree(label: str, value: Any) -> Tree:
    """
    Render a snapshot as a rich tree, showing modified markers inline.
    """
    tree = Tree(f"[bold]{escape(label)}[/bold]")
    _add_children(tree, value)
    return tree


def _add_children(tree: Tree, value: Any):
    if not isinstance(value, Mapping):
        tree.add(_format_leaf(value))
        return

    for key, child in value.items():
        if key == MARKER_KEY:
            continue

        label = f"[cyan]{escape(key)}[/cyan]"

        if isinstance(child, Mapping) and MARKER_KEY in child:
            label += f" [dim]@{escape(str(child[MARKER_KEY]))}[/dim]"

        if is_wrapped(child):
            tree.add(f"{label}: {_format_leaf(child[VALUE_KEY])}")
        elif isinstance(child, Mapping):
            _add_children(tree.add(label), child)
        else:
            tree.add(f"{label}: {_format_leaf(child)}")


def _format_leaf(value: Any) -> str:
    if isinstance(value, str):
        return f"[green]{escape(repr(value))}[/green]"
    return escape(repr(value))
