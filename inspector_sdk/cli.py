# Copyright 2025 ATP Project Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Inspector SDK CLI
Key management and tracking plan helpers.
"""

import asyncio
import json

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import DEFAULT_BASE_URL, InspectorEnv
from .encryption import decrypt_value, generate_key_pair
from .event_spec import EventSpecFetcher, EventSpecResponse, FetchEventSpecParams
from .exceptions import EncryptionError

app = typer.Typer(name="inspector-sdk", help="Inspector SDK command-line tools", no_args_is_help=True)
console = Console()


@app.command("generate-keys")
def generate_keys(
    output_format: str = typer.Option("table", "--output", "-o", help="Output format (table, json)"),
):
    """Generate a P-256 key pair for property value encryption"""
    keys = generate_key_pair()

    if output_format == "json":
        console.print_json(json.dumps(keys))
        return

    console.print(Panel(keys["public_key"], title="Public key (safe to share with the SDK)", border_style="green"))
    console.print(Panel(keys["private_key"], title="Private key (keep secure, never commit)", border_style="red"))
    rprint("[bold]Next steps:[/bold]")
    rprint("1. Pass the public key as [cyan]public_encryption_key[/cyan] when creating the Inspector.")
    rprint("2. Keep the private key to decrypt property values in the dashboard.")


@app.command("decrypt")
def decrypt(
    value: str = typer.Argument(..., help="Base64 encrypted property value"),
    private_key: str = typer.Option(..., "--private-key", "-k", help="Hex private key"),
):
    """Decrypt an encrypted property value"""
    try:
        decrypted = decrypt_value(value, private_key)
    except EncryptionError as e:
        rprint(f"[red]Error decrypting value: {e}[/red]")
        raise typer.Exit(1) from e
    console.print_json(json.dumps(decrypted, default=str))


def _render_spec(spec: EventSpecResponse) -> None:
    metadata = spec.metadata
    console.print(
        Panel(
            f"[bold]Schema:[/bold] {metadata.schema_id}\n"
            f"[bold]Branch:[/bold] {metadata.branch_id}\n"
            f"[bold]Latest action:[/bold] {metadata.latest_action_id}\n"
            f"[bold]Source:[/bold] {metadata.source_id or 'N/A'}",
            title="Event Spec",
            border_style="blue",
        )
    )

    for entry in spec.events:
        table = Table(title=f"{entry.base_event_id} ({len(entry.variant_ids)} variants)")
        table.add_column("Property", style="cyan")
        table.add_column("Type")
        table.add_column("Required")
        table.add_column("Constraints")
        for name, constraints in entry.props.items():
            kinds = [
                label
                for label, mapping in (
                    ("pinned", constraints.pinned_values),
                    ("allowed", constraints.allowed_values),
                    ("regex", constraints.regex_patterns),
                    ("range", constraints.min_max_ranges),
                    ("children", constraints.children),
                )
                if mapping
            ]
            type_name = f"list({constraints.type})" if constraints.is_list else constraints.type
            table.add_row(name, type_name, "yes" if constraints.required else "no", ", ".join(kinds) or "-")
        console.print(table)


@app.command("fetch-spec")
def fetch_spec(
    api_key: str = typer.Option(..., "--api-key", envvar="INSPECTOR_API_KEY", help="Inspector API key"),
    stream_id: str = typer.Option(..., "--stream-id", help="Stream id to fetch for"),
    event_name: str = typer.Option(..., "--event-name", "-e", help="Event name"),
    env: InspectorEnv = typer.Option(InspectorEnv.DEV, "--env", help="Environment"),
    base_url: str = typer.Option(DEFAULT_BASE_URL, "--base-url", envvar="INSPECTOR_BASE_URL", help="Spec API base URL"),
    timeout: float = typer.Option(2.0, "--timeout", help="Request timeout in seconds"),
    output_format: str = typer.Option("table", "--output", "-o", help="Output format (table, json)"),
):
    """Fetch and display the tracking plan spec of an event"""

    async def run() -> EventSpecResponse | None:
        fetcher = EventSpecFetcher(timeout=timeout, should_log=True, env=env, base_url=base_url)
        try:
            return await fetcher.fetch(FetchEventSpecParams(api_key=api_key, stream_id=stream_id, event_name=event_name))
        finally:
            await fetcher.aclose()

    spec = asyncio.run(run())
    if spec is None:
        rprint(f"[yellow]No event spec available for '{event_name}' in {env.value}.[/yellow]")
        raise typer.Exit(1)

    if output_format == "json":
        console.print_json(spec.model_dump_json(by_alias=True))
    else:
        _render_spec(spec)


def main():
    app()


if __name__ == "__main__":
    main()
