# cli.py - Command line interface for allyfilter
"""
allyfilter CLI - run the accessibility filter outside the LMS

COMMANDS:
    Filtering:
        allyfilter filter FRAGMENT [--maps F | --files F]   Wrap file references in an HTML fragment
        allyfilter page PAGE [--maps F]                     Client-side pass over a saved page
        allyfilter watch PAGE -o OUT                        Rerun the page pass on every change

    Maps:
        allyfilter maps COURSE_YAML [--pagetype T]          Build the maps a page would get
        allyfilter fetch-maps COURSE_ID                     Ask a remote LMS for its maps

    Identifiers:
        allyfilter ident build C T F ID                     component:table:field:id
        allyfilter ident parse IDENT

    Other:
        allyfilter init [--force]                           Write an allyfilter.yaml template
        allyfilter version

EXAMPLES:
    # Wrap references using a flat path -> hash map
    allyfilter filter content.html --maps maps.json

    # Same, with maps built from a file store fixture
    allyfilter filter content.html --files course.yaml -o wrapped.html

    # Build the footer payload for a folder page
    allyfilter maps course.yaml --pagetype mod-folder-view --param id=12
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click

from allyfilter import __version__
from allyfilter.bootstrap import PageInit, PagePayload, extract_payload
from allyfilter.cache import AreaCache
from allyfilter.config_utils import (
    CONFIG_FILENAME,
    AllyConfig,
    create_config_template,
    get_config,
    get_service_credentials,
)
from allyfilter.course import Permissions, load_course
from allyfilter.errors import AllyFilterError, input_file_error
from allyfilter.filter import TextFilter
from allyfilter.files import FileStore, load_data_file
from allyfilter.icons import icons
from allyfilter.identifiers import build_content_ident, parse_content_ident
from allyfilter.log_utils import setup_logging
from allyfilter.mapper import EntityMapper, EntityMaps
from allyfilter.maps_client import MapsServiceClient
from allyfilter.page.runner import process_page
from allyfilter.resolver import FileStoreReferenceSource, StaticReferenceSource
from allyfilter.service import get_module_maps


# ============================================================================
# Configuration & Utilities
# ============================================================================

class AllyContext:
    """Shared context for CLI commands"""

    def __init__(self, verbosity: int = 0):
        self.verbosity = verbosity
        self.cwd = Path.cwd()
        self._config: Optional[AllyConfig] = None

    @property
    def config(self) -> AllyConfig:
        if self._config is None:
            self._config = get_config(self.cwd)
        return self._config


def _fail(error: AllyFilterError):
    click.echo(error.format_message(), err=True)
    sys.exit(1)


def _read_input(path: str) -> str:
    if path == "-":
        return click.get_text_stream("stdin").read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise input_file_error(Path(path), "fragment", cause=e)


def _write_output(text: str, output: Optional[str]):
    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"{icons.SUCCESS} Wrote {output}", err=True)
    else:
        click.echo(text)


def _parse_params(values: Tuple[str, ...]) -> Dict[str, str]:
    params = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"expected key=value, got {item!r}", param_hint="--param")
        key, value = item.split("=", 1)
        params[key.strip()] = value.strip()
    return params


def _load_maps_file(path: Path) -> EntityMaps:
    data = load_data_file(path, "maps file")
    if "moduleMaps" in data or "sectionMaps" in data:
        return EntityMaps.from_dict(data)
    # A bare module map
    return EntityMaps(module_maps=data)


# ============================================================================
# Click Group Setup
# ============================================================================

@click.group()
@click.option('--verbose', '-v', count=True, help='More output (-v info, -vv debug)')
@click.pass_context
def cli(ctx, verbose: int):
    """
    allyfilter - Accessibility placeholders for LMS course content

    Wraps file links and images in feedback/download placeholders and
    attaches rich content identifiers for the accessibility service.
    """
    setup_logging(verbose)
    ctx.obj = AllyContext(verbose)


# ============================================================================
# Filtering
# ============================================================================

@cli.command('filter')
@click.argument('fragment', type=click.Path(allow_dash=True))
@click.option('--maps', 'maps_file', type=click.Path(exists=True, path_type=Path),
              help='Flat JSON/YAML map of file path -> path hash')
@click.option('--files', 'files_file', type=click.Path(exists=True, path_type=Path),
              help='File store fixture (contexts and files)')
@click.option('--feedback/--no-feedback', default=True, help='Viewer can view accessibility feedback')
@click.option('--download/--no-download', default=True, help='Viewer can download alternative formats')
@click.option('--annotation', help='Rich content identifier for the fragment root')
@click.option('--output', '-o', type=click.Path(), help='Write result here instead of stdout')
@click.pass_obj
def filter_command(ctx: AllyContext, fragment: str, maps_file: Optional[Path], files_file: Optional[Path],
                   feedback: bool, download: bool, annotation: Optional[str], output: Optional[str]):
    """
    Wrap file references in an HTML fragment (server side)

    Exactly one of --maps or --files must be given.

    Examples:
        allyfilter filter content.html --maps maps.json
        cat content.html | allyfilter filter - --files course.yaml
    """
    if bool(maps_file) == bool(files_file):
        raise click.UsageError("Give exactly one of --maps or --files")

    try:
        if maps_file:
            references = StaticReferenceSource(load_data_file(maps_file, "maps file"))
        else:
            references = FileStoreReferenceSource(
                FileStore.load(files_file), AreaCache(ctx.config.cache_path), ctx.config.omit_cache
            )

        text_filter = TextFilter(
            references,
            Permissions(can_view_feedback=feedback, can_download=download),
            config=ctx.config,
            annotation=annotation,
        )
        result = text_filter.filter(_read_input(fragment))
    except AllyFilterError as e:
        _fail(e)

    if files_file and ctx.config.cache_path:
        references.cache.save()

    stats = text_filter.stats
    click.echo(
        f"{icons.WRAP} {stats.wrapped} wrapped, {icons.REPAIR} {stats.repaired} repaired, "
        f"{stats.skipped} left as-is ({stats.candidates} candidates)",
        err=True,
    )
    _write_output(result, output)


@cli.command()
@click.argument('page_file', metavar='PAGE', type=click.Path(exists=True, path_type=Path))
@click.option('--maps', 'maps_file', type=click.Path(exists=True, path_type=Path),
              help='Maps file (default: the ally_* script embedded in the page)')
@click.option('--feedback/--no-feedback', default=None, help='Override the page grant')
@click.option('--download/--no-download', default=None, help='Override the page grant')
@click.option('--param', 'params', multiple=True, help='Page parameter key=value (pageid, chapterid...)')
@click.option('--output', '-o', type=click.Path(), help='Write result here instead of stdout')
@click.pass_obj
def page(ctx: AllyContext, page_file: Path, maps_file: Optional[Path], feedback: Optional[bool],
         download: Optional[bool], params: Tuple[str, ...], output: Optional[str]):
    """
    Wrap and annotate a saved page (client side)

    Examples:
        allyfilter page course.html
        allyfilter page lesson.html --param pageid=7 -o out.html
    """
    html = page_file.read_text(encoding="utf-8")
    try:
        payload = extract_payload(html)
        if maps_file:
            init = payload.init if payload else PageInit()
            payload = PagePayload(_load_maps_file(maps_file), init)
    except AllyFilterError as e:
        _fail(e)

    if payload is None:
        click.echo(f"{icons.WARNING} No maps in page and no --maps given; nothing to do", err=True)
        _write_output(html, output)
        return

    if feedback is not None:
        payload.init.can_view_feedback = feedback
    if download is not None:
        payload.init.can_download = download
    payload.init.params.update(_parse_params(params))

    page_url = page_file.resolve().as_uri()
    result, report = asyncio.run(process_page(html, url=page_url, payload=payload,
                                              settings=ctx.config.client))
    click.echo(f"{icons.WRAP} {report.wrapped} wrapped, {icons.ANNOTATE} {report.annotated} annotated", err=True)
    _write_output(result, output)


@cli.command()
@click.argument('page_file', metavar='PAGE', type=click.Path(exists=True, path_type=Path))
@click.option('--output', '-o', required=True, type=click.Path(path_type=Path), help='Where to write the result')
@click.option('--maps', 'maps_file', type=click.Path(exists=True, path_type=Path), help='Maps file to watch too')
@click.pass_obj
def watch(ctx: AllyContext, page_file: Path, output: Path, maps_file: Optional[Path]):
    """
    Rerun the page pass whenever the page (or maps file) changes

    Examples:
        allyfilter watch course.html -o course.out.html
    """
    from allyfilter.watch import watch_page

    def payload_loader() -> Optional[PagePayload]:
        payload = extract_payload(page_file.read_text(encoding="utf-8"))
        if maps_file:
            payload = PagePayload(_load_maps_file(maps_file), payload.init if payload else PageInit())
        return payload

    click.echo(f"{icons.WATCH} Starting watch mode (Ctrl+C to stop)...")
    watch_page(page_file, output, maps_file, payload_loader, ctx.config.client)


# ============================================================================
# Maps
# ============================================================================

@cli.command()
@click.argument('course_file', metavar='COURSE_YAML', type=click.Path(exists=True, path_type=Path))
@click.option('--pagetype', help='Override the fixture page type')
@click.option('--param', 'params', multiple=True, help='Page parameter key=value')
@click.option('--service-format', is_flag=True, help='Print the web service response instead')
@click.option('--script', is_flag=True, help='Print the footer <script> instead of JSON')
@click.pass_obj
def maps(ctx: AllyContext, course_file: Path, pagetype: Optional[str], params: Tuple[str, ...],
         service_format: bool, script: bool):
    """
    Build the maps a page of this course would get

    Examples:
        allyfilter maps course.yaml
        allyfilter maps course.yaml --pagetype mod-forum-view --param id=4
        allyfilter maps course.yaml --service-format
    """
    try:
        bundle = load_course(course_file)
    except AllyFilterError as e:
        _fail(e)

    if service_format:
        try:
            response = get_module_maps(bundle.course.id, lambda cid: bundle if cid == bundle.course.id else None)
        except AllyFilterError as e:
            _fail(e)
        click.echo(json.dumps(response, indent=2))
        return

    if pagetype:
        bundle.page.pagetype = pagetype
    bundle.page.params.update(_parse_params(params))

    if script:
        text_filter = TextFilter(
            FileStoreReferenceSource(bundle.store),
            bundle.permissions,
            config=ctx.config,
        )
        output = text_filter.setup(bundle.course, bundle.page, bundle.store)
        click.echo(output or "")
        return

    result = EntityMapper(bundle.course, bundle.store, bundle.page).get_maps()
    click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))


@cli.command('fetch-maps')
@click.argument('course_id', type=int)
@click.pass_obj
def fetch_maps(ctx: AllyContext, course_id: int):
    """
    Retrieve module maps from a remote LMS web service

    Credentials come from ALLY_SERVICE_URL / ALLY_SERVICE_TOKEN,
    allyfilter.yaml or the credentials file.
    """
    try:
        url, token = get_service_credentials(ctx.config)
        result = MapsServiceClient(url, token).get_module_maps(course_id)
    except AllyFilterError as e:
        _fail(e)
    except ValueError as e:
        raise click.BadParameter(str(e))
    click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))


# ============================================================================
# Identifiers
# ============================================================================

@cli.group()
def ident():
    """Build or parse rich content identifiers"""


@ident.command('build')
@click.argument('component')
@click.argument('table')
@click.argument('field')
@click.argument('record_id')
def ident_build(component: str, table: str, field: str, record_id: str):
    """component:table:field:id"""
    click.echo(build_content_ident(component, table, field, record_id))


@ident.command('parse')
@click.argument('identifier')
def ident_parse(identifier: str):
    """Split an identifier into its four parts"""
    try:
        parsed = parse_content_ident(identifier)
    except AllyFilterError as e:
        _fail(e)
    click.echo(f"component: {parsed.component}")
    click.echo(f"table:     {parsed.table}")
    click.echo(f"field:     {parsed.field}")
    click.echo(f"id:        {parsed.id}")


# ============================================================================
# Init / Version
# ============================================================================

@cli.command()
@click.option('--force', is_flag=True, help='Overwrite an existing allyfilter.yaml')
@click.pass_obj
def init(ctx: AllyContext, force: bool):
    """Write an allyfilter.yaml template in the current directory"""
    yaml_path = ctx.cwd / CONFIG_FILENAME
    if yaml_path.exists() and not force:
        click.echo(f"{icons.WARNING} {CONFIG_FILENAME} already exists (use --force to overwrite)")
        return
    yaml_path.write_text(create_config_template())
    click.echo(f"{icons.SUCCESS} Created {yaml_path}")


@cli.command()
def version():
    """Show allyfilter version"""
    click.echo(f"allyfilter v{__version__}")
    click.echo("Accessibility placeholders for LMS course content")


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == '__main__':
    cli()
