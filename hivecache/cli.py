"""
Command-line interface for hivecache maintenance.

Commands:
- warm-cache: Pre-populate the files namespace
- clear-cache: Clear one or all namespaces
- cache-stats: Display namespace statistics
- search: Cache-first text search
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click

from hivecache.cache import warm_cache
from hivecache.config import get_settings
from hivecache.exceptions import HiveCacheException
from hivecache.search import SearchOptions
from hivecache.service import CacheService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _service(cache_dir: Optional[str]) -> CacheService:
    settings = get_settings()
    if cache_dir:
        settings = settings.model_copy(update={"cache_directory": cache_dir})
    return CacheService.default(settings)


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.1f} MB"


cache_dir_option = click.option(
    '--cache-dir',
    type=str,
    default=None,
    help='Custom cache directory (default: from config)'
)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def cli(verbose: bool):
    """
    hivecache CLI.

    Maintenance tools for the persistent file cache and cache-first search.
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")


@cli.command('warm-cache')
@click.option(
    '--directory', '-d',
    required=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    help='Directory to scan and cache files from'
)
@click.option(
    '--recursive/--no-recursive', '-r',
    default=True,
    help='Recursively scan subdirectories (default: recursive)'
)
@click.option('--pattern', '-p', default='*', help='Glob pattern to match files (default: *)')
@click.option(
    '--concurrency', '-c',
    default=10,
    type=click.IntRange(1, 50),
    help='Maximum concurrent reads (default: 10)'
)
@cache_dir_option
@click.option('--quiet', '-q', is_flag=True, help='Suppress progress output')
def warm_cache_command(
    directory: Path,
    recursive: bool,
    pattern: str,
    concurrency: int,
    cache_dir: Optional[str],
    quiet: bool,
):
    """
    Pre-populate cache with file contents from a directory.

    Examples:

        \b
        hivecache warm-cache -d ./docs
        hivecache warm-cache -d ./scripts -p "*.js" --no-recursive
    """
    service = _service(cache_dir)

    def progress(current: int, total: int, file_path: Path):
        if not quiet and current % 10 == 0:
            click.echo(f"Progress: {current}/{total} - {file_path.name}", err=True)

    stats = asyncio.run(warm_cache(
        service.files,
        directory=directory,
        recursive=recursive,
        pattern=pattern,
        concurrency=concurrency,
        progress_callback=progress,
    ))

    if not quiet:
        click.echo(click.style("Cache Warmup Complete!", fg='green', bold=True))
        click.echo(str(stats))

    if stats.files_failed > 0:
        click.echo(click.style(
            f"Warning: {stats.files_failed} files failed to cache. See logs for details.",
            fg='yellow'
        ), err=True)
        raise SystemExit(1)


@cli.command('clear-cache')
@click.option('--namespace', '-n', default=None, help='Only clear this namespace')
@cache_dir_option
@click.option('--force', '-f', is_flag=True, help='Skip confirmation prompt')
def clear_cache_command(namespace: Optional[str], cache_dir: Optional[str], force: bool):
    """
    Clear all caches, or a single namespace.

    Examples:

        \b
        hivecache clear-cache --force
        hivecache clear-cache -n search -f
    """
    service = _service(cache_dir)
    target = namespace or "ALL namespaces"

    if not force and not click.confirm(f"Clear {target} in {service.cache_root}?"):
        click.echo("Operation cancelled.")
        return

    try:
        if namespace:
            results = {namespace: asyncio.run(service.clear(namespace))}
        else:
            results = asyncio.run(service.clear_all())
    except HiveCacheException as e:
        click.echo(click.style(f"Error clearing cache: {e.message}", fg='red'), err=True)
        raise SystemExit(1)

    for name, result in results.items():
        click.echo(
            f"  {name}: cleared {result['cleared']} entries "
            f"({_format_bytes(result['total_size'])}), {result['errors']} errors"
        )
    click.echo(click.style("Cache cleared successfully!", fg='green', bold=True))


@cli.command('cache-stats')
@click.option('--namespace', '-n', default=None, help='Only show this namespace')
@cache_dir_option
@click.option('--json', 'output_json', is_flag=True, help='Output statistics as JSON')
def cache_stats_command(namespace: Optional[str], cache_dir: Optional[str], output_json: bool):
    """
    Display comprehensive cache statistics.

    Expired entries found while collecting statistics are removed.
    """
    service = _service(cache_dir)

    try:
        if namespace:
            stats = {"namespaces": {namespace: asyncio.run(service.namespace(namespace).stats())}}
        else:
            stats = asyncio.run(service.stats())
    except HiveCacheException as e:
        click.echo(click.style(f"Error getting cache stats: {e.message}", fg='red'), err=True)
        raise SystemExit(1)

    if output_json:
        click.echo(json.dumps(stats, indent=2))
        return

    click.echo(click.style("Cache Statistics", fg='blue', bold=True))
    for name, ns in stats["namespaces"].items():
        click.echo()
        click.echo(f"{name}:")
        click.echo(f"  Entries: {ns['items']} ({_format_bytes(ns['total_size'])})")
        click.echo(f"  Total hits: {ns['total_hits']}")
        click.echo(f"  Expired removed: {ns['expired']}")
        for entry in ns["active"][:5]:
            click.echo(f"    {entry['hits']:>5}  {entry['key']}")


@cli.command('search')
@click.argument('pattern')
@click.option('--regex', is_flag=True, help='Treat PATTERN as a regular expression')
@click.option('--case-sensitive', is_flag=True, help='Match case exactly')
@click.option('--filenames', is_flag=True, help='Match file names instead of contents')
@click.option('--cache-only', is_flag=True, help='Skip the disk phase')
@click.option('--max-matches', default=5, type=click.IntRange(1, 1000), help='Matches per file')
@click.option('--root', type=click.Path(exists=True, file_okay=False, path_type=Path),
              default=None, help='Search root (default: from config)')
@cache_dir_option
@click.option('--json', 'output_json', is_flag=True, help='Output results as JSON')
def search_command(
    pattern: str,
    regex: bool,
    case_sensitive: bool,
    filenames: bool,
    cache_only: bool,
    max_matches: int,
    root: Optional[Path],
    cache_dir: Optional[str],
    output_json: bool,
):
    """
    Search cached files first, then the rest of the tree on disk.

    Examples:

        \b
        hivecache search TODO
        hivecache search "def \\w+_cache" --regex --root ./src
    """
    settings = get_settings()
    updates = {}
    if cache_dir:
        updates["cache_directory"] = cache_dir
    if root:
        updates["search_root"] = str(root)
    service = CacheService.default(settings.model_copy(update=updates))

    options = SearchOptions(
        regex=regex,
        ignore_case=not case_sensitive,
        content_search=not filenames,
        max_matches=max_matches,
        max_disk_results=settings.max_disk_results,
        include_non_cached=not cache_only,
    )

    try:
        response = asyncio.run(service.search.combined_search(pattern, options))
    except HiveCacheException as e:
        click.echo(click.style(f"Search failed: {e.message}", fg='red'), err=True)
        raise SystemExit(2)

    if output_json:
        click.echo(json.dumps(response.to_dict(), indent=2))
        return

    for result in response.results:
        source = "cache" if result.cached else "disk"
        if not result.matches:
            click.echo(f"{result.path} [{source}]")
        for match in result.matches:
            click.echo(f"{result.path}:{match.line}:{match.column}: {match.text} [{source}]")

    s = response.stats
    click.echo(
        f"{s.total_matches} files ({s.cache_hits} cache, {s.disk_hits} disk) in {s.total_time}ms",
        err=True,
    )


if __name__ == '__main__':
    cli()
