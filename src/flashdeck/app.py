"""Interactive CLI application."""
import logging
import os
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from flashdeck.analytics import get_study_analytics
from flashdeck.db import init_db, DEFAULT_DB_PATH
from flashdeck.errors import NotFound, StoreWriteFailure
from flashdeck.flashcards import CardRepository
from flashdeck.importer import import_file
from flashdeck.models import SessionType, StudySessionStats
from flashdeck.settings import load_settings
from flashdeck.store import SqliteCardStore
from flashdeck.study import SessionPhase, SessionScope, StudySessionManager

console = Console()

EXIT_WORDS = ("q", "quit", "menu")
RATING_CHOICES = ["0", "1", "3", "4"]


class SessionExitRequested(Exception):
    """Raised when the learner asks to leave a running session."""
    pass


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


def session_int_prompt(prompt: str, choices: list[str]) -> int:
    answer = session_prompt(prompt, choices=choices + ["q"], show_choices=False)
    return int(answer)


def configure_logging() -> None:
    level = os.environ.get("FLASHDECK_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def show_welcome():
    console.print(Panel(
        "[bold]flashdeck[/bold]\n[dim]Spaced repetition flashcards[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("study", "Review due cards"),
        ("new", "Learn new cards"),
        ("mixed", "Due and new cards shuffled"),
        ("custom", "Filtered session by deck and tags"),
        ("decks", "Deck overview"),
        ("stats", "Accuracy, streak and daily activity"),
        ("import", "Add cards from a file"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def show_session_summary(stats: StudySessionStats) -> None:
    console.print(Panel(
        f"Cards studied: [bold]{stats.total_cards}[/bold]\n"
        f"Correct: [bold]{stats.correct_cards}[/bold] ({stats.accuracy:.0f}%)\n"
        f"Average time: [bold]{stats.average_time:.1f}s[/bold]\n"
        f"New: {stats.new_cards}  Review: {stats.review_cards}  Again: {stats.learning_cards}",
        title="Session Complete", border_style="green",
    ))


def _submit(manager: StudySessionManager, handle, rating: int) -> None:
    while True:
        try:
            if handle.phase == SessionPhase.FINALIZING:
                # The answer is saved; only ending the session failed.
                manager.complete_session(handle)
            else:
                manager.submit_answer(handle, rating)
            return
        except StoreWriteFailure:
            console.print("[red]Could not save your answer.[/red]")
            session_prompt("[dim]Press Enter to try again (q to pause)[/dim]", default="")


def run_flashcard_session(manager: StudySessionManager, handle) -> StudySessionStats | None:
    """Present every unit of a started session. Returns None when paused."""
    if handle.phase == SessionPhase.COMPLETE:
        console.print("[yellow]No flashcards due right now![/yellow]")
        return handle.result.stats
    total = len(handle.units)
    console.print(f"\n[bold]Study Session[/bold] — {total} cards\n")
    try:
        while True:
            unit = manager.current_unit(handle)
            if unit is None:
                break
            title = f"Card {handle.index + 1}/{total}"
            if unit.total_markers > 1:
                title += f" (blank {unit.target_marker} of {unit.total_markers})"
            console.print(Panel(manager.current_question(handle), title=title, border_style="cyan"))
            session_prompt("[dim]Press Enter to reveal answer (q to pause)[/dim]", default="")
            revealed = manager.reveal_answer(handle)
            console.print(Panel(revealed.answer, border_style="green"))
            rating = session_int_prompt("Rate yourself (0=again, 1=hard, 3=good, 4=easy)", choices=RATING_CHOICES)
            _submit(manager, handle, rating)
            console.print()
    except SessionExitRequested:
        if handle.phase == SessionPhase.FINALIZING:
            console.print("[dim]Your answers are saved. The session will be closed later.[/dim]")
            return None
        manager.pause_session(handle)
        console.print("[dim]Session paused. Your progress is saved.[/dim]")
        return None
    if handle.phase == SessionPhase.FINALIZING:
        manager.complete_session(handle)
    show_session_summary(handle.result.stats)
    return handle.result.stats


def choose_deck(store: SqliteCardStore, allow_all: bool = True) -> int | None:
    decks = store.list_decks()
    if not decks:
        console.print("[yellow]No decks yet. Use 'import' to add cards.[/yellow]")
        return None
    for d in decks:
        console.print(f"  [cyan]{d.id}[/cyan]) {d.name}")
    choices = [str(d.id) for d in decks]
    if allow_all:
        console.print("  [cyan]a[/cyan]) All decks")
        choices.append("a")
    choice = Prompt.ask("Select deck", choices=choices, default="a" if allow_all else choices[0])
    return None if choice == "a" else int(choice)


def cmd_study(manager: StudySessionManager, store: SqliteCardStore, mode: SessionType):
    console.print(f"\n[bold]{mode.value.title()} Session[/bold]")
    deck_id = choose_deck(store)
    handle = manager.start_session(SessionScope(deck_id=deck_id), mode)
    run_flashcard_session(manager, handle)


def cmd_custom(manager: StudySessionManager, store: SqliteCardStore):
    console.print("\n[bold]Custom Study Session[/bold]")
    deck_id = choose_deck(store, allow_all=False)
    if deck_id is None:
        return
    tags = manager.repository.get_flashcard_tags()
    if tags:
        console.print(f"[dim]Tags: {', '.join(tags)}[/dim]")
    raw = Prompt.ask("Tags (comma separated, blank for any)", default="")
    selected = tuple(t.strip() for t in raw.split(",") if t.strip())
    due_only = Prompt.ask("Due cards only?", choices=["y", "n"], default="y") == "y"
    count = manager.repository.get_custom_study_count(deck_id, selected, due_only)
    console.print(f"[dim]{count} matching cards (up to {manager.settings.custom_session_cap} per session)[/dim]")
    handle = manager.start_session(
        SessionScope(deck_id=deck_id, tags=selected, due_only=due_only, custom=True), SessionType.MIXED,
    )
    run_flashcard_session(manager, handle)


def cmd_decks(manager: StudySessionManager, store: SqliteCardStore):
    table = Table(title="Decks")
    table.add_column("Deck", style="cyan")
    for col in ("Total", "New", "Due", "Learning", "Mature", "Suspended"):
        table.add_column(col, justify="right")
    for deck in store.list_decks():
        s = manager.deck_stats(deck.id)
        table.add_row(deck.name, str(s.total), str(s.new), f"[bold]{s.due}[/bold]",
                      str(s.learning), str(s.mature), str(s.suspended))
    console.print(table)


def cmd_stats(manager: StudySessionManager, store: SqliteCardStore):
    data = get_study_analytics(store, days=manager.settings.analytics_window_days)
    console.print(Panel(
        f"Reviews: [bold]{data['total_reviews']}[/bold]  |  "
        f"Accuracy: [bold]{data['accuracy']}%[/bold]  |  "
        f"Streak: [bold]{data['streak']} days[/bold]",
        title=f"Last {manager.settings.analytics_window_days} Days", border_style="blue",
    ))
    if data["daily_stats"]:
        table = Table(title="Daily Activity")
        table.add_column("Date")
        table.add_column("Reviews", justify="right")
        table.add_column("Accuracy", justify="right")
        for day in data["daily_stats"]:
            table.add_row(day.date, str(day.reviews), f"{day.accuracy:.0f}%")
        console.print(table)


def cmd_import(manager: StudySessionManager, store: SqliteCardStore):
    file_path = Prompt.ask("File path")
    if not Path(file_path).exists():
        console.print(f"[red]File not found: {file_path}[/red]")
        return
    name = Prompt.ask("Deck name")
    deck = next((d for d in store.list_decks() if d.name == name), None) or store.create_deck(name)
    result = import_file(manager.repository, file_path, deck.id)
    console.print(f"[green]Imported {result['created']} cards from {result['filename']} → {deck.name}[/green]")


def main():
    configure_logging()
    db_path = DEFAULT_DB_PATH
    init_db(db_path)
    store = SqliteCardStore(db_path)
    settings = load_settings(db_path)
    manager = StudySessionManager(CardRepository(store, settings))

    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="study").strip().lower()
        try:
            if choice == "study":
                cmd_study(manager, store, SessionType.REVIEW)
            elif choice == "new":
                cmd_study(manager, store, SessionType.NEW)
            elif choice == "mixed":
                cmd_study(manager, store, SessionType.MIXED)
            elif choice == "custom":
                cmd_custom(manager, store)
            elif choice == "decks":
                cmd_decks(manager, store)
            elif choice == "stats":
                cmd_stats(manager, store)
            elif choice == "import":
                cmd_import(manager, store)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]See you next review![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except NotFound as e:
            console.print(f"[red]{e}. Pick another deck.[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
