"""
Sofra - CLI Entry Point.

Usage:
    sofra plan-day --prefs prefs.json              Plan today's meals
    sofra plan-week --prefs prefs.json --repeat spaced
    sofra status --week 2026-10-19 --watch         Follow a weekly job
    sofra shopping-list --week 2026-10-19          Aggregate a completed week
    sofra hash --prefs prefs.json                  Print the preference hash
    sofra health                                   Check configuration
"""

import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table

from sofra.core.result import Err
from sofra.models.menu import MenuBundle
from sofra.models.preferences import MealType, PreferenceSnapshot
from sofra.models.status import GenerationStatus

app = typer.Typer(
    name="sofra",
    help="Sofra - personalised daily meal planning.",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Log to stderr; quiet the HTTP client libraries."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _bootstrap(verbose: bool, log_prompts: bool) -> None:
    from sofra.llm.prompt_logger import enable_prompt_logging
    from sofra.observability.langsmith import init_langsmith

    load_dotenv()
    setup_logging(verbose)
    init_langsmith()
    if log_prompts:
        enable_prompt_logging(True)
        console.print("[dim]Prompt logging enabled. Check prompt_logs/ after the run.[/dim]")


def _load_snapshot(path: Path) -> PreferenceSnapshot:
    try:
        return PreferenceSnapshot.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not read preferences from {path}: {e}[/red]")
        raise typer.Exit(2)


def _parse_date(value: str | None) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date: {value} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(2)


def _failure_panel(title: str, error: Err) -> Panel:
    return Panel.fit(
        f"[bold]{error.kind.value}[/bold]\n{error.detail}\n\n"
        "[dim]Nothing was planned. Check your connection and try again.[/dim]",
        title=title,
        border_style="red",
    )


def _render_bundle(meal: MealType, bundle: MenuBundle) -> None:
    decision = bundle.decision
    table = Table(title=f"{meal.value.title()} · {decision.cuisine} · {decision.total_time_minutes} min")
    table.add_column("Course", style="cyan")
    table.add_column("Dish", style="bold")
    table.add_column("Time", justify="right")
    table.add_column("kcal/serving", justify="right")

    for course, name in decision.slots():
        recipe = bundle.recipe_for(course)
        if recipe:
            table.add_row(
                course.value,
                name,
                f"{recipe.total_time_minutes:.0f} min",
                f"{recipe.nutrition.per_serving.calories:.0f}",
            )
        else:
            table.add_row(course.value, name, "-", "-")

    console.print(table)
    console.print(f"[dim]{decision.reasoning}[/dim]\n")


def _render_status(status: GenerationStatus) -> str:
    colour = {"completed": "green", "failed": "red"}.get(status.status.value, "yellow")
    line = (
        f"[{colour}]{status.status.value}[/{colour}] "
        f"{status.completed_days}/{status.total_days} days (week of {status.week_start})"
    )
    if status.error:
        line += f"\n[red]{status.error}[/red]"
    return line


@app.command("plan-day")
def plan_day(
    prefs: Path = typer.Option(..., "--prefs", "-p", help="Preferences JSON file"),
    user: str = typer.Option("local", "--user", "-u", help="User id"),
    day: str | None = typer.Option(None, "--date", "-d", help="Date (YYYY-MM-DD), default today"),
    meals: list[str] = typer.Option(None, "--meal", "-m", help="Meal(s) to plan; default from routine"),
    pantry: list[str] = typer.Option(None, "--pantry", help="Ingredients to use up"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_prompts: bool = typer.Option(False, "--log-prompts", "-l", help="Log all LLM prompts to prompt_logs/"),
) -> None:
    """Plan one day's meals, showing the first one as soon as it is ready."""
    from sofra.observability.langsmith import get_session_tracker
    from sofra.orchestrator.session import DayPlanSession
    from sofra.preferences.requests import day_of_week, resolve_meal_plan
    from sofra.services import build_services

    _bootstrap(verbose, log_prompts)
    snapshot = _load_snapshot(prefs)
    target = _parse_date(day)

    try:
        meal_types = [MealType(m.lower()) for m in meals] if meals else resolve_meal_plan(
            snapshot.routine_for(day_of_week(target))
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    if not meal_types:
        console.print(f"[dim]{target} is excluded from the plan.[/dim]")
        return

    services = build_services()
    session = DayPlanSession()

    async def _run() -> DayPlanSession:
        await services.day_planner.start_day_plan(session, user, target, meal_types, snapshot, pantry=pantry or ())
        with Live(Spinner("dots", text="Planning..."), console=console, transient=True):
            ready = await services.day_planner.wait_for_first_ready(session)
        if not ready:
            console.print("[yellow]Still cooking up your menu, hang on...[/yellow]")
        await services.day_planner.wait_for_all(session)
        await services.resolver.wait_pending()
        return session

    asyncio.run(_run())

    for meal in meal_types:
        result = session.results.get(meal)
        if result is None:
            continue
        if isinstance(result, Err):
            console.print(_failure_panel(f"{meal.value.title()} failed", result))
        else:
            _render_bundle(meal, result.value)

    tracker = get_session_tracker()
    if tracker.calls:
        per_node = ", ".join(f"{node} ${cost:.4f}" for node, cost in tracker.cost_by("node").items())
        console.print(
            f"[dim]Cost: ${tracker.total_cost:.4f} "
            f"({tracker.total_input_tokens:,} in / {tracker.total_output_tokens:,} out tokens; {per_node})[/dim]"
        )

    if session.error is not None:
        raise typer.Exit(1)


@app.command("plan-week")
def plan_week(
    prefs: Path = typer.Option(..., "--prefs", "-p", help="Preferences JSON file"),
    user: str = typer.Option("local", "--user", "-u", help="User id"),
    week: str | None = typer.Option(None, "--week", "-w", help="Any date in the week, default this week"),
    repeat: str = typer.Option("consecutive", "--repeat", "-r", help="Dinner repeats: none, consecutive, spaced"),
    only_day: str | None = typer.Option(None, "--day", help="Regenerate just this date (YYYY-MM-DD)"),
    pantry: list[str] = typer.Option(None, "--pantry", help="Ingredients to use up"),
    avoid: list[str] = typer.Option(None, "--avoid", help="Ingredients to avoid this week"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_prompts: bool = typer.Option(False, "--log-prompts", "-l"),
) -> None:
    """Generate a whole week in one batch job."""
    from sofra.batch.status import JobAlreadyRunning
    from sofra.batch.weekly import RepeatMode
    from sofra.services import build_services

    _bootstrap(verbose, log_prompts)
    snapshot = _load_snapshot(prefs)
    week_start = _parse_date(week)
    single_day = _parse_date(only_day) if only_day else None

    try:
        repeat_mode = RepeatMode(repeat.lower())
    except ValueError:
        valid = ", ".join(m.value for m in RepeatMode)
        console.print(f"[red]Invalid repeat mode: {repeat}. Options: {valid}[/red]")
        raise typer.Exit(2)

    services = build_services()

    async def _run():
        result = await services.weekly.generate_week(
            user,
            snapshot,
            week_start,
            repeat_mode=repeat_mode,
            pantry=pantry or (),
            avoid_ingredients=avoid or (),
            single_day=single_day,
        )
        await services.resolver.wait_pending()
        return result

    try:
        with Live(Spinner("dots", text="Planning the week..."), console=console, transient=True):
            result = asyncio.run(_run())
    except JobAlreadyRunning as e:
        console.print(f"[red]{e}[/red]\n[dim]Follow it with: sofra status --watch[/dim]")
        raise typer.Exit(1)

    for (meal_day, meal), bundle in sorted(result.menus.items(), key=lambda kv: (kv[0][0], kv[0][1].value)):
        marker = " [dim](repeat)[/dim]" if (meal_day, meal) in result.reused else ""
        console.print(f"{meal_day} {meal.value:<9} {', '.join(bundle.decision.dish_names())}{marker}")

    if result.status is not None:
        console.print(_render_status(result.status))

    for (meal_day, meal), error in result.failures.items():
        console.print(_failure_panel(f"{meal_day} {meal.value} failed", error))

    if not result.ok:
        raise typer.Exit(1)


@app.command()
def status(
    user: str = typer.Option("local", "--user", "-u", help="User id"),
    week: str | None = typer.Option(None, "--week", "-w", help="Any date in the week, default this week"),
    watch: bool = typer.Option(False, "--watch", help="Keep polling until the job finishes"),
    timeout: float | None = typer.Option(None, "--timeout", help="Stop watching after this many seconds"),
) -> None:
    """Show (or follow) a weekly job's status."""
    from sofra.services import build_services

    load_dotenv()
    setup_logging(False)
    week_start = _parse_date(week)
    services = build_services()

    async def _run() -> GenerationStatus | None:
        if not watch:
            return await services.tracker.get_status(user, week_start)
        subscription = services.tracker.subscribe_status(
            user, week_start, lambda s: console.print(_render_status(s)), timeout=timeout
        )
        return await subscription.wait()

    current = asyncio.run(_run())
    if current is None:
        console.print(f"[dim]No generation job for the week of {week_start}.[/dim]")
        raise typer.Exit(1)
    if not watch:
        console.print(_render_status(current))


@app.command("shopping-list")
def shopping_list(
    user: str = typer.Option("local", "--user", "-u", help="User id"),
    week: str | None = typer.Option(None, "--week", "-w", help="Any date in the week, default this week"),
    meals: list[str] = typer.Option(None, "--meal", "-m", help="Only these meal types"),
    categorize: bool = typer.Option(False, "--categorize", "-c", help="Group items by store section"),
) -> None:
    """Aggregate ingredients for a completed week."""
    from sofra.batch.shopping import GROCERY_CATEGORIES, StatusNotCompleted
    from sofra.services import build_services

    load_dotenv()
    setup_logging(False)
    week_start = _parse_date(week)
    services = build_services(categorize_groceries=categorize)
    meal_types = {MealType(m.lower()) for m in meals} if meals else None

    try:
        items = asyncio.run(services.shopping.build(user, week_start, meal_types))
    except StatusNotCompleted as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Shopping list · week of {week_start}")
    if categorize:
        table.add_column("Section", style="cyan")
    table.add_column("Item", style="bold")
    table.add_column("Amount", justify="right")
    table.add_column("For", style="dim")

    order = list(GROCERY_CATEGORIES)
    for item in sorted(items, key=lambda i: (order.index(i.category) if i.category in order else len(order), i.name)):
        row = [item.name, f"{item.amount:g} {item.unit}", ", ".join(item.meals)]
        table.add_row(*([item.category, *row] if categorize else row))

    console.print(table)


@app.command("hash")
def hash_prefs(
    prefs: Path = typer.Option(..., "--prefs", "-p", help="Preferences JSON file"),
    show: bool = typer.Option(False, "--show", "-s", help="Also print the normalised snapshot"),
) -> None:
    """Print the preference hash used to tag generated menus."""
    from sofra.preferences.hashing import normalize_snapshot, preference_hash

    snapshot = _load_snapshot(prefs)
    console.print(preference_hash(snapshot))
    if show:
        console.print_json(json.dumps(normalize_snapshot(snapshot)))


@app.command()
def health() -> None:
    """Check configuration and connectivity prerequisites."""
    from pydantic import ValidationError

    load_dotenv()
    try:
        from sofra.config import get_settings

        current = get_settings()
    except ValidationError as e:
        console.print(f"[red]✗ Configuration invalid: {e.errors()[0]['loc']} {e.errors()[0]['msg']}[/red]")
        raise typer.Exit(1)

    console.print("[green]✓ OpenAI API key configured[/green]")
    console.print(f"[dim]  model: {current.openai_model}[/dim]")
    if current.has_supabase:
        console.print("[green]✓ Supabase configured[/green]")
    else:
        console.print("[yellow]✗ Supabase not configured (SUPABASE_URL / SUPABASE_ANON_KEY)[/yellow]")
    console.print(f"[dim]  local cache: {current.local_cache_dir} (ttl {current.local_cache_ttl_hours}h)[/dim]")
    if current.langchain_tracing_v2:
        console.print(f"[green]✓ LangSmith tracing → {current.langchain_project}[/green]")


if __name__ == "__main__":
    app()
