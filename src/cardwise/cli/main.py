"""Main CLI entry point for Cardwise."""

import typer
from dotenv import load_dotenv
from rich import print as rprint
from rich.panel import Panel
from rich.table import Table

from cardwise.cli.helpers import console, get_service, split_tags, truncate
from cardwise.core.errors import CardwiseError
from cardwise.core.models import Card, ReviewRating

load_dotenv()

app = typer.Typer(
    name="cardwise",
    help="Multi-tenant spaced repetition scheduling.",
    no_args_is_help=True,
)

TENANT_OPTION = typer.Option(
    ...,
    "--tenant",
    "-u",
    envvar="CARDWISE_TENANT",
    help="Tenant (user) identifier; defaults to $CARDWISE_TENANT",
)
TAGS_OPTION = typer.Option(
    None,
    "--tags",
    "-t",
    help="Comma-separated tags (cards with ANY of them match)",
)


def _print_cards(cards: list[Card], title: str) -> None:
    if not cards:
        rprint("[dim]No cards found.[/dim]")
        return

    table = Table(title=f"{title} ({len(cards)} total)")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Instructions", max_width=60)
    table.add_column("Tags", style="green")
    table.add_column("Due", style="cyan")

    for card in cards:
        table.add_row(str(card.id), truncate(card.instructions), ", ".join(card.tags), card.due)

    console.print(table)


# ============================================================================
# Card commands
# ============================================================================


@app.command()
def add(
    instructions: str = typer.Argument(..., help="Card instructions"),
    tenant: str = TENANT_OPTION,
    tags: str | None = TAGS_OPTION,
) -> None:
    """Add a new card."""
    service = get_service()
    try:
        card_id = service.cards.create_card(tenant, instructions, split_tags(tags))
    except CardwiseError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    rprint(f"[green]Card saved![/green] ID: {card_id}")


@app.command()
def edit(
    card_id: int = typer.Argument(..., help="Card ID"),
    tenant: str = TENANT_OPTION,
    instructions: str | None = typer.Option(None, "--instructions", "-i", help="New instructions"),
    tags: str | None = typer.Option(None, "--tags", "-t", help="Replace tags (comma-separated)"),
) -> None:
    """Edit a card's instructions and/or tags."""
    service = get_service()
    new_tags = split_tags(tags) if tags is not None else None
    try:
        edited = service.cards.edit_card(tenant, card_id, instructions, new_tags)
    except CardwiseError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    if not edited:
        rprint(f"[red]Card not found: {card_id}[/red]")
        raise typer.Exit(1)
    rprint(f"[green]Card {card_id} updated.[/green]")


@app.command()
def delete(
    card_ids: list[int] = typer.Argument(..., help="One or more card IDs"),
    tenant: str = TENANT_OPTION,
) -> None:
    """Delete cards along with their tags and review history."""
    service = get_service()
    result = service.cards.delete_cards(tenant, card_ids)
    for ref in result.successful:
        rprint(f"[green]Deleted card {ref.card_id}[/green]")
    for failure in result.failed:
        rprint(f"[red]Card {failure.card_id}: {failure.error}[/red]")
    if result.failed:
        raise typer.Exit(1)


@app.command("list")
def list_cards(
    tenant: str = TENANT_OPTION,
    tags: str | None = TAGS_OPTION,
) -> None:
    """List all cards with optional tag filter."""
    service = get_service()
    _print_cards(service.cards.get_all_cards(tenant, split_tags(tags)), "Cards")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    tenant: str = TENANT_OPTION,
    tags: str | None = TAGS_OPTION,
) -> None:
    """Search cards by content."""
    service = get_service()
    _print_cards(service.cards.search_cards(tenant, query, split_tags(tags)), f"Results for '{query}'")


@app.command()
def due(
    tenant: str = TENANT_OPTION,
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum cards to show"),
    tags: str | None = TAGS_OPTION,
) -> None:
    """Show due cards, the ones closest to being forgotten first."""
    service = get_service()
    try:
        cards = service.reviews.get_due_cards(tenant, limit, split_tags(tags))
    except CardwiseError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    _print_cards(cards, "Due cards")


# ============================================================================
# Review commands
# ============================================================================


@app.command()
def rate(
    card_id: int = typer.Argument(..., help="Card ID"),
    rating: str = typer.Argument(..., help="1-4 or again/hard/good/easy"),
    tenant: str = TENANT_OPTION,
) -> None:
    """Record a single review without an interactive session."""
    service = get_service()
    try:
        outcome = service.reviews.submit_review(tenant, card_id, rating)
    except CardwiseError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    rprint(
        f"Next review: {outcome.next_review_date.isoformat()} "
        f"(in {outcome.interval_days} day(s))"
    )


@app.command()
def review(
    tenant: str = TENANT_OPTION,
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum cards to review"),
    tags: str | None = TAGS_OPTION,
) -> None:
    """Start an interactive review session."""
    service = get_service()
    cards = service.reviews.get_due_cards(tenant, limit, split_tags(tags))

    if not cards:
        rprint("[green]No cards due for review![/green]")
        return

    rprint(f"\n[bold]Review Session[/bold]: {len(cards)} card(s)\n")

    reviewed = 0
    for i, card in enumerate(cards, 1):
        title = f"Card {i}/{len(cards)}"
        if card.tags:
            title += f" - {', '.join(card.tags)}"
        console.print(Panel(card.instructions, title=title, border_style="blue"))

        rating = _prompt_rating()
        if rating is None:
            rprint("\n[yellow]Session ended early.[/yellow]")
            break

        try:
            outcome = service.reviews.submit_review(tenant, card.id, rating)
        except CardwiseError as exc:
            # Card deleted since the session started
            rprint(f"[red]{exc}[/red]")
            continue
        rprint(f"[dim]Next review: {outcome.next_review_date.isoformat()}[/dim]\n")
        reviewed += 1

    rprint("\n[bold green]Session complete![/bold green]")
    rprint(f"Reviewed {reviewed} card(s).")


def _prompt_rating() -> ReviewRating | None:
    """Prompt user for rating."""
    rprint("\n[bold]Rate this card:[/bold]")
    rprint(
        "  [red]1[/red] Again (forgot)  "
        "[yellow]2[/yellow] Hard  "
        "[green]3[/green] Good  "
        "[cyan]4[/cyan] Easy  "
        "[dim]q[/dim] Quit"
    )

    while True:
        choice = typer.prompt("Rating", default="3")
        if choice.lower() == "q":
            return None
        try:
            rating_value = int(choice)
            if 1 <= rating_value <= 4:
                return ReviewRating(rating_value)
        except ValueError:
            pass
        rprint("[red]Invalid choice. Enter 1-4 or q to quit.[/red]")


@app.command()
def undo(
    card_id: int = typer.Argument(..., help="Card ID"),
    tenant: str = TENANT_OPTION,
) -> None:
    """Undo the most recent review of a card."""
    service = get_service()
    if not service.reviews.undo_review(tenant, card_id):
        rprint(f"[yellow]Nothing to undo for card {card_id}.[/yellow]")
        raise typer.Exit(1)
    rprint(f"[green]Last review of card {card_id} undone.[/green]")


# ============================================================================
# STATS command
# ============================================================================


@app.command()
def stats(
    tenant: str = TENANT_OPTION,
    tags: str | None = TAGS_OPTION,
) -> None:
    """Show review statistics."""
    service = get_service()
    full = service.stats.get_stats(tenant, split_tags(tags))

    table = Table(title="Cardwise Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total Cards", str(full.total))
    table.add_row("Due Today", str(full.due_today))
    table.add_row("Reviewed (24h)", str(full.cards_reviewed_last_24h))
    table.add_row("Total Reviews", str(full.total_reviews))
    table.add_row("Current Streak", f"{full.current_streak} day(s)")
    table.add_row("Longest Streak", f"{full.longest_streak} day(s)")

    if full.by_tag:
        table.add_row("", "")
        table.add_row("[bold]By Tag[/bold]", "[bold]due / total[/bold]")
        for tag, counts in full.by_tag.items():
            table.add_row(f"  {tag}", f"{counts.due} / {counts.total}")

    console.print(table)


# ============================================================================
# SERVE command
# ============================================================================


@app.command()
def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port to run the server on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development"),
) -> None:
    """Start the JSON API server."""
    import uvicorn

    rprint("\n[bold]Starting Cardwise API server[/bold]")
    rprint(f"  URL: http://{host}:{port}/api")
    rprint("\n[dim]Press Ctrl+C to stop[/dim]\n")

    uvicorn.run("cardwise.web.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
