"""Pagecast: page-by-page audio narration of documents.

Command line front end for the document job engine in ``pagecast.jobs``.
"""

import asyncio
import difflib
import logging
import os
import sys

from .config import PipelineConfig
from .jobs import (
    JobManager,
    DocumentWorker,
    RetryCoordinator,
    InMemoryProgressSink,
    ProgressBroadcaster,
    PagecastError,
    build_orchestrator,
    run_worker,
    setup_logging
)
from .segmenter import PageSegmenter, split_pages

__version__ = "0.1.0"

__all__ = ['main', 'PageSegmenter', 'split_pages', '__version__']


def print_usage():
    print("""
Usage: pagecast <command> [arguments] [options]

Commands:
    submit <text_file>           Queue extracted text for narration
    status <document_id>         Show page-by-page progress of a document
    list                         List your documents
    retry <document_id> <page>   Retry a failed page and wait for it
    delete <document_id>         Delete a document and stop its polling
    logs <document_id>           Show the document's log
    worker                       Run the background worker

Options:
    --owner <str>          Owner identity (default: $PAGECAST_OWNER)
    --voice <str>          Voice id for submit (required)
    --speed <float>        Speech speed, 0.1 to 5 (default: 1.0)
    --temperature <float>  Sampling temperature, 0 to 2 (default: provider default)
    --wait                 With submit: process the document in this process
    --db <path>            SQLite database path (default: ~/.pagecast/documents.db)
    --debug                Show debug logging
    -h, --help             Show this help message

Environment:
    PLAYHT_API_KEY, PLAYHT_USER_ID   PlayHT credentials
    PAGECAST_POLL_INTERVAL           Seconds between job status checks (default: 2)

Examples:
    pagecast submit book.txt --owner me@example.com --voice s3://voices/narrator.json --wait
    pagecast status 3f2a... --owner me@example.com
    pagecast retry 3f2a... 7 --owner me@example.com
    pagecast worker
    """)


VALUE_OPTIONS = {'--owner', '--voice', '--speed', '--temperature', '--db'}
FLAG_OPTIONS = {'--wait', '--debug', '--help', '-h'}
COMMANDS = {'submit', 'status', 'list', 'retry', 'delete', 'logs', 'worker'}


def parse_args(argv):
    """
    Split argv into (command, positionals, options).

    Raises:
        ValueError: On unknown options or missing option values
    """
    options = {}
    positionals = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in VALUE_OPTIONS:
            if i + 1 >= len(argv):
                raise ValueError(f"{arg} requires a value")
            options[arg] = argv[i + 1]
            i += 2
            continue
        if arg in FLAG_OPTIONS:
            options[arg] = True
        elif arg.startswith('-'):
            similar = difflib.get_close_matches(arg, VALUE_OPTIONS | FLAG_OPTIONS, n=3, cutoff=0.4)
            hint = f" (did you mean {', '.join(similar)}?)" if similar else ""
            raise ValueError(f"Unknown option: {arg}{hint}")
        else:
            positionals.append(arg)
        i += 1

    command = positionals.pop(0) if positionals else None
    return command, positionals, options


def _print_progress(event):
    page = f" page {event.page_number}" if event.page_number is not None else ""
    print(f"[{event.phase}]{page} {event.completed_pages}/{event.total_pages}")


def _show_status(manager, document_id, owner):
    document = manager.get_document(document_id, owner)
    progress = manager.get_file_progress(document_id, owner)
    print(f"Document: {document.document_id} {document.file_name}")
    print(f"Pages: {progress.processed_pages}/{progress.total_pages} ({progress.percentage:.1f}%)")
    print(f"Complete: {'yes' if progress.processing_complete else 'no'}")
    if progress.failed_pages:
        print(f"Failed pages: {', '.join(str(n) for n in progress.failed_pages)}")
    for page in progress.pages:
        line = f"  {page['page_number']:>4}  {page['audio_status']:<10}"
        if page['audio_url']:
            line += f"  {page['audio_url']}"
        elif page['error']:
            line += f"  {page['error']}"
        print(line)


def _require(value, message):
    if not value:
        raise ValueError(message)
    return value


async def _submit_and_wait(config, document_id, owner):
    sink = InMemoryProgressSink()
    sink.subscribe(owner, document_id, _print_progress)
    orchestrator = build_orchestrator(config, broadcaster=ProgressBroadcaster(sink))
    await DocumentWorker(orchestrator).drain()


async def _retry_and_wait(config, document_id, page_number, owner):
    sink = InMemoryProgressSink()
    sink.subscribe(owner, document_id, _print_progress)
    orchestrator = build_orchestrator(config, broadcaster=ProgressBroadcaster(sink))
    await RetryCoordinator(orchestrator).retry_page(document_id, page_number, owner)
    await orchestrator.wait_idle(document_id)


def main(argv=None):
    """Main entry point for the pagecast CLI tool."""
    argv = sys.argv[1:] if argv is None else argv

    try:
        command, positionals, options = parse_args(argv)
    except ValueError as e:
        print(f"Error: {e}")
        print_usage()
        return 1

    if options.get('--help') or options.get('-h') or command is None:
        print_usage()
        return 0

    if command not in COMMANDS:
        similar = difflib.get_close_matches(command, COMMANDS, n=1)
        print(f"Error: Unknown command: {command}" + (f" (did you mean {similar[0]}?)" if similar else ""))
        return 1

    setup_logging(logging.DEBUG if options.get('--debug') else logging.WARNING)

    config = PipelineConfig.from_env()
    if options.get('--db'):
        config.db_path = options['--db']

    if command == 'worker':
        run_worker(config)
        return 0

    owner = options.get('--owner') or os.getenv('PAGECAST_OWNER', '')
    manager = JobManager(config.db_path)

    try:
        _require(owner, "--owner is required")

        if command == 'submit':
            path = _require(positionals[0] if positionals else None, "submit needs a text file")
            with open(path, 'r', encoding='utf-8') as f:
                text = f.read()

            temperature = options.get('--temperature')
            document_id = manager.submit_document(
                owner=owner,
                extracted_text=text,
                voice_id=_require(options.get('--voice'), "--voice is required"),
                temperature=float(temperature) if temperature is not None else None,
                speed=float(options.get('--speed', 1.0)),
                file_name=os.path.basename(path),
                file_size=os.path.getsize(path)
            )
            print(f"Queued document {document_id} ({len(split_pages(text, config.page_separator))} pages)")

            if options.get('--wait'):
                asyncio.run(_submit_and_wait(config, document_id, owner))
                _show_status(manager, document_id, owner)

        elif command == 'status':
            _show_status(manager, _require(positionals[0] if positionals else None, "status needs a document id"), owner)

        elif command == 'list':
            for document in manager.list_documents(owner):
                state = "complete" if document.processing_complete else "in progress"
                print(f"{document.document_id}  {document.processed_pages}/{document.total_pages}  "
                      f"{state}  {document.file_name}")

        elif command == 'retry':
            if len(positionals) < 2:
                raise ValueError("retry needs a document id and a page number")
            document_id, page_number = positionals[0], int(positionals[1])
            asyncio.run(_retry_and_wait(config, document_id, page_number, owner))
            _show_status(manager, document_id, owner)

        elif command == 'delete':
            document_id = _require(positionals[0] if positionals else None, "delete needs a document id")
            manager.delete_document(document_id, owner)
            print(f"Deleted document {document_id}")

        elif command == 'logs':
            document_id = _require(positionals[0] if positionals else None, "logs needs a document id")
            for entry in reversed(manager.get_document_logs(document_id, owner)):
                print(f"[{entry['level']}] {entry['message']}")

    except (PagecastError, ValueError, OSError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        manager.close()

    return 0
