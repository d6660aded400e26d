"""Command line interface for CaseLens."""

from __future__ import annotations

import logging
from contextlib import closing
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from caselens.config import AppConfig
from caselens.detection.detector import ContentDetector
from caselens.errors import Result
from caselens.index.indexer import SearchIndexer
from caselens.index.search import Searcher
from caselens.models import SearchFilters, SearchQuery
from caselens.pipeline import ContentPipeline, stored_cases
from caselens.similarity.patterns import PatternMatcher
from caselens.storage.repositories import PatternRepository
from caselens.storage.store import SQLiteEntityStore
from caselens.web.app import app as web_app


console = Console()
app = typer.Typer(help="CaseLens - content intelligence for support cases")
saved_app = typer.Typer(help="Manage saved searches")
app.add_typer(saved_app, name="saved")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _resolve_db(db: Optional[Path]) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _open_store(db: Optional[Path], *, create: bool = True) -> SQLiteEntityStore:
    resolved_db = _resolve_db(db)
    if not create and not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    _ensure_db_parent(resolved_db)
    return SQLiteEntityStore(resolved_db)


def _unwrap(result: Result):
    """Return the payload of ``result`` or exit with its error."""
    if result.success:
        return result.data
    console.print(f"[red]Error: {result.error}[/red]")
    raise typer.Exit(code=1)


def _matcher(store: SQLiteEntityStore) -> PatternMatcher:
    return PatternMatcher(PatternRepository(store))


@app.command()
def analyze(
    text: str = typer.Argument(..., help="Pasted content to analyze"),
    source: str = typer.Option("clipboard", help="clipboard, drag-drop or file-upload"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Classify content and look for similar or duplicate cases."""
    _setup_logging(verbose)
    with closing(_open_store(db)) as store:
        pipeline = ContentPipeline(stored_cases(store), detector=ContentDetector(_matcher(store)))
        event = _unwrap(pipeline.process(text, source))  # type: ignore[arg-type]

    console.print(
        f"Type: [bold]{event.content_type}[/bold] (confidence {event.confidence:.2f})"
    )
    metadata = event.metadata
    if metadata.case_numbers:
        console.print(f"Case numbers: {', '.join(metadata.case_numbers)}")
    if metadata.urls:
        console.print(f"URLs: {', '.join(metadata.urls)}")
    if metadata.urgency_level:
        console.print(f"Urgency: {metadata.urgency_level}")
    if metadata.duplicate_content:
        console.print("[yellow]Looks like a duplicate of an existing case.[/yellow]")
    for case in metadata.similar_cases or []:
        console.print(f"Similar: {case.case_number} {case.title} ({case.similarity:.2f})")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Action")
    table.add_column("Confidence")
    table.add_column("Description")
    for action in event.suggested_actions:
        table.add_row(action.label, f"{action.confidence:.2f}", action.description)
    console.print(table)


@app.command()
def index(
    entity_type: str = typer.Argument(..., help="case, inbox_item or image"),
    entity_id: str = typer.Argument(..., help="Entity identifier"),
    title: Optional[str] = typer.Option(None, help="Title; omit to index the stored entity"),
    content: str = typer.Option("", help="Body text"),
    tags: List[str] = typer.Option([], "--tag", help="Tag (repeatable)"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index a single entity."""
    _setup_logging(verbose)
    with closing(_open_store(db)) as store:
        indexer = SearchIndexer(store)
        if title is None:
            entity = store.get(entity_type, entity_id)
            if entity is None:
                console.print(f"[red]Error: {entity_type} {entity_id} not found[/red]")
                raise typer.Exit(code=1)
            result = indexer.index_document(entity_type, entity)
        else:
            result = indexer.index_entity(entity_id, entity_type, title=title, content=content, tags=tags)
        entry = _unwrap(result)

    console.print(f"Indexed {entry.entity_type} [bold]{entry.entity_id}[/bold]")


@app.command()
def rebuild(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Rebuild the search index from every stored entity."""
    _setup_logging(verbose)
    with closing(_open_store(db)) as store:
        console.print(f"Rebuilding index in [bold]{store.db_path}[/bold]...")
        stats = _unwrap(SearchIndexer(store).rebuild_all())
    console.print(f"Indexed: {stats.indexed}, skipped: {stats.skipped}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    entity_types: List[str] = typer.Option([], "--type", help="Restrict to entity type (repeatable)"),
    tags: List[str] = typer.Option([], "--tag", help="Restrict to tag (repeatable)"),
    sort_by: str = typer.Option("relevance", help="relevance, title or date"),
    sort_order: str = typer.Option("desc", help="asc or desc"),
    limit: int = typer.Option(AppConfig().default_limit, help="Number of results to display"),
    offset: int = typer.Option(0, help="Results to skip"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Search indexed entities."""
    _setup_logging(verbose)
    filters = SearchFilters(entity_types=entity_types or None, tags=tags or None)
    with closing(_open_store(db, create=False)) as store:
        response = _unwrap(
            Searcher(store).search(
                SearchQuery(
                    text=query,
                    filters=filters,
                    sort_by=sort_by,  # type: ignore[arg-type]
                    sort_order=sort_order,  # type: ignore[arg-type]
                    limit=limit,
                    offset=offset,
                )
            )
        )

    if not response.results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Snippet")
    for result in response.results:
        snippet = result.snippet.replace("\n", " ")
        table.add_row(f"{result.relevance_score:.4f}", result.entity_type, result.title, snippet)

    console.print(table)
    console.print(
        f"{response.stats.total_results} results in {response.stats.search_time_ms:.1f} ms"
    )


@app.command()
def suggest(
    partial: str = typer.Argument(..., help="Partial query"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show query suggestions for a partial query."""
    with closing(_open_store(db, create=False)) as store:
        suggestions = _unwrap(Searcher(store).get_suggestions(partial))
    for suggestion in suggestions:
        console.print(f"{suggestion.text} [dim]({suggestion.type})[/dim]")


@app.command()
def learn(
    text: str = typer.Argument(..., help="Categorized content"),
    category: str = typer.Option(..., help="Confirmed category"),
    confidence: float = typer.Option(0.8, help="Confidence of the categorization"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Learn a pattern from a confirmed categorization."""
    _setup_logging(verbose)
    with closing(_open_store(db)) as store:
        pattern = _unwrap(_matcher(store).learn_from_categorization(text, category, confidence))
    console.print(f"Pattern [bold]{pattern.pattern}[/bold] -> {pattern.category} ({pattern.id})")


@app.command()
def feedback(
    pattern_id: str = typer.Argument(..., help="Pattern identifier"),
    correct: bool = typer.Option(True, "--correct/--incorrect", help="Whether the suggestion was right"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Record whether a pattern's suggestion was correct."""
    with closing(_open_store(db, create=False)) as store:
        pattern = _unwrap(_matcher(store).update_pattern_feedback(pattern_id, correct))
    console.print(f"Success rate of {pattern.id} is now {pattern.success_rate:.3f}")


@app.command()
def patterns(
    category: Optional[str] = typer.Option(None, help="Only patterns of this category"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List learned patterns with summary statistics."""
    with closing(_open_store(db, create=False)) as store:
        repository = PatternRepository(store)
        stats = repository.get_statistics()
        rows = repository.find_by_filters(category=category)

    if not rows:
        console.print("[yellow]No patterns learned yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Pattern")
    table.add_column("Confidence")
    table.add_column("Success")
    for pattern in rows:
        table.add_row(
            pattern.id,
            pattern.pattern_type,
            pattern.category,
            pattern.pattern,
            f"{pattern.confidence:.2f}",
            f"{pattern.success_rate:.2f}",
        )
    console.print(table)
    console.print(
        f"{stats.total_patterns} patterns, average confidence {stats.average_confidence:.2f}, "
        f"average success rate {stats.average_success_rate:.2f}"
    )


@app.command()
def prune(
    min_success_rate: float = typer.Option(AppConfig().prune_success_rate, help="Success rate floor"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove patterns whose success rate fell below the floor."""
    resolved_db = _resolve_db(db)
    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    with closing(SQLiteEntityStore(resolved_db)) as store:
        removed = _unwrap(_matcher(store).cleanup_low_performing(min_success_rate))
    console.print(f"Removed {removed} low-performing patterns.")


@app.command()
def merge(
    threshold: float = typer.Option(AppConfig().merge_threshold, help="Word-overlap threshold"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Merge near-identical patterns of the same type and category."""
    with closing(_open_store(db, create=False)) as store:
        merged = _unwrap(_matcher(store).merge_similar_patterns(threshold))
    console.print(f"Merged {merged} patterns.")


@saved_app.command("list")
def saved_list(db: Path = typer.Option(None, "--db", help="SQLite database path")) -> None:
    """List saved searches, newest first."""
    with closing(_open_store(db, create=False)) as store:
        searches = _unwrap(Searcher(store).get_saved_searches())

    if not searches:
        console.print("[yellow]No saved searches.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Query")
    table.add_column("Uses")
    for saved in searches:
        table.add_row(saved.id, saved.name, saved.query, str(saved.use_count))
    console.print(table)


@saved_app.command("add")
def saved_add(
    name: str = typer.Argument(..., help="Name of the saved search"),
    query: str = typer.Argument(..., help="Query text"),
    entity_types: List[str] = typer.Option([], "--type", help="Restrict to entity type (repeatable)"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Save a query for later."""
    filters = SearchFilters(entity_types=entity_types or None)
    with closing(_open_store(db)) as store:
        saved = _unwrap(Searcher(store).save_search(name, SearchQuery(text=query, filters=filters)))
    console.print(f"Saved search [bold]{saved.name}[/bold] ({saved.id})")


@saved_app.command("delete")
def saved_delete(
    search_id: str = typer.Argument(..., help="Saved search identifier"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete a saved search."""
    with closing(_open_store(db, create=False)) as store:
        _unwrap(Searcher(store).delete_saved_search(search_id))
    console.print(f"Deleted saved search {search_id}.")


@saved_app.command("run")
def saved_run(
    search_id: str = typer.Argument(..., help="Saved search identifier"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Run a saved search."""
    with closing(_open_store(db, create=False)) as store:
        response = _unwrap(Searcher(store).use_saved_search(search_id))

    if not response.results:
        console.print("[yellow]No matches found.[/yellow]")
        return
    for result in response.results:
        console.print(f"{result.relevance_score:.4f}  {result.entity_type}  {result.title}")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Start the JSON API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    resolved_db = _resolve_db(db)
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, searches might fail.[/yellow]")

    console.print(f"Starting API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
