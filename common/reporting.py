"""Shared console reporting helpers, rich or plain."""

from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence, TypeAlias

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

Reporter = Callable[[str], None]
Renderable: TypeAlias = Any


class PanelPrinter(Protocol):
    def __call__(self, message: Renderable, title: str | None = None, style: str | None = None) -> None: ...


class TableBuilder(Protocol):
    def __call__(
        self,
        columns: Sequence[str],
        rows: Sequence[Sequence[str]],
        title: str | None = None,
        style: str | None = None,
    ) -> object: ...


def show_table(
    reporter: Reporter,
    paneler: PanelPrinter | None,
    table_builder: TableBuilder | None,
    *,
    title: str | None,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    style: str | None = None,
) -> None:
    if table_builder is None:
        reporter(format_plain_table(title, columns, rows))
        return
    table = table_builder(columns, rows, title=title, style=style)
    if paneler is None:
        reporter(str(table))
        return
    paneler(table, None, style)


def format_plain_table(title: str | None, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(column) for column in columns]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = [title] if title else []
    lines.append(" | ".join(column.ljust(width) for column, width in zip(columns, widths)))
    lines.append("-+-".join("-" * width for width in widths))
    for row in rows:
        lines.append(" | ".join(cell.ljust(width) for cell, width in zip(row, widths)))
    return "\n".join(lines)


def _has_markup(message: Renderable) -> bool:
    return isinstance(message, str) and "[/" in message


def _plain_reporter(message: str) -> None:
    print(message, flush=True)


def make_reporter(use_rich: bool = True, console: Console | None = None) -> tuple[Reporter, PanelPrinter | None, TableBuilder | None]:
    if not use_rich:
        return _plain_reporter, None, None

    out = console or Console()

    def reporter(message: str) -> None:
        out.print(message if _has_markup(message) else escape(message), highlight=False)

    def panel(message: Renderable, title: str | None = None, style: str | None = None) -> None:
        content = (message if _has_markup(message) else escape(message)) if isinstance(message, str) else message
        out.print(Panel(content, title=title, box=box.ROUNDED, style=style or "none"))

    def table_builder(
        columns: Sequence[str],
        rows: Sequence[Sequence[str]],
        title: str | None = None,
        style: str | None = None,
    ) -> object:
        table = Table(title=title, box=box.ROUNDED, style=style or "none")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        return table

    return reporter, panel, table_builder
