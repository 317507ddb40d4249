"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from chatbridge.llm.types import ChatEndpoint, ModelDescriptor, TextPart, ToolCallPart


class OutputFormatter:
    """Rich-based output formatting for the chatbridge CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_model_list(
        self,
        models: list[ModelDescriptor],
        endpoints: list[ChatEndpoint],
    ) -> None:
        if not models:
            self.console.print("[dim]No models found.[/dim]")
            return

        budgets = {e.model: e.model_max_prompt_tokens for e in endpoints}
        table = Table(title="Models")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Family", no_wrap=True)
        table.add_column("Max input", justify="right")
        table.add_column("Max output", justify="right")
        table.add_column("Prompt budget", justify="right")
        table.add_column("Tools", no_wrap=True)

        for m in models:
            table.add_row(
                m.id,
                m.family,
                f"{m.max_input_tokens:,}",
                f"{m.max_output_tokens:,}",
                f"{budgets.get(m.id, 0):,}",
                "yes" if m.tool_calling else "no",
            )

        self.console.print(table)

    def format_part(self, part: TextPart | ToolCallPart) -> None:
        """Render one response part as it arrives."""
        if isinstance(part, TextPart):
            self.console.print(part.value, end="", markup=False, highlight=False)
            return

        title = f"Tool call: {part.name} ({part.call_id})"
        if part.error:
            self.console.print(Panel(f"[red]{part.error}[/red]", title=title, border_style="red"))
            return
        self.console.print()
        self.console.print(Panel(
            Syntax(json.dumps(part.arguments, indent=2), "json", theme="monokai"),
            title=title,
        ))

    def format_config(self, config: dict) -> None:
        config_json = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(config_json, "json", theme="monokai"))
