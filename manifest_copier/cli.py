"""
Command-line interface for the copy service.
"""
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config, settings_from_config
from .coordinator import CopyCoordinator
from .copier import RETRY_DELAY_SECONDS
from .exceptions import CopierError
from .formats import PRESETS, build_extension_filter, format_description
from .manifest import parse_manifest_text, read_manifest
from .models import (
    CopyRequest,
    DuplicateHandling,
    RunResult,
    RunStatus,
    VerificationFailureAction,
    VerificationMethod,
)
from .monitor import DEFAULT_INTERVAL, ProgressPrinter
from .tracker import CHECKPOINT_INTERVAL_FILES, MAX_CHECKPOINT_FILES, CheckpointStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
        log_file: Optional file that receives a copy of the log
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def create_coordinator(args: argparse.Namespace, config: dict) -> CopyCoordinator:
    """Create and configure the copy coordinator.

    Args:
        args: Command line arguments
        config: Loaded configuration file values

    Returns:
        Configured CopyCoordinator instance
    """
    checkpoint_dir = config.get('checkpoint_dir')
    store = CheckpointStore(
        checkpoint_dir=Path(checkpoint_dir) if checkpoint_dir else None,
        max_checkpoints=config.get('max_checkpoints', MAX_CHECKPOINT_FILES),
        save_interval=config.get('checkpoint_interval', CHECKPOINT_INTERVAL_FILES)
    )
    progress = None if getattr(args, 'quiet', False) else ProgressPrinter()

    return CopyCoordinator(
        store=store,
        retry_delay=config.get('retry_delay', RETRY_DELAY_SECONDS),
        progress_callback=progress,
        progress_interval=config.get('progress_interval', DEFAULT_INTERVAL)
    )


def _setting_overrides(args: argparse.Namespace) -> dict:
    """Map copy command flags onto CopySettings fields; unset flags are None."""
    extension_filter = build_extension_filter(args.extensions, args.preset or ())
    return {
        'ignore_extension': True if args.ignore_extension else None,
        'case_insensitive': True if args.case_insensitive else None,
        'duplicate_handling': args.duplicates,
        'enable_parallel': False if args.sequential else None,
        'parallel_threads': args.threads,
        'enable_filters': True if extension_filter or args.min_size is not None
        or args.max_size is not None else None,
        'extension_filter': extension_filter or None,
        'min_size_mb': args.min_size,
        'max_size_mb': args.max_size,
        'enable_verification': False if args.no_verify else None,
        'verification_method': args.verify_method,
        'verification_failure_action': args.on_verify_failure,
    }


def _run_with_interrupt(coordinator: CopyCoordinator, run) -> RunResult:
    """Run a session, turning Ctrl-C into a cooperative cancellation."""
    previous = signal.signal(signal.SIGINT, lambda s, f: coordinator.cancel())
    try:
        return run()
    finally:
        signal.signal(signal.SIGINT, previous)


def _report(coordinator: CopyCoordinator, result: RunResult,
            export_path: Optional[Path] = None) -> int:
    snapshot = result.snapshot
    print(f"\nSession: {result.session_id}")
    print(f"Status: {result.status.value}")
    print(f"Copied: {snapshot.found}")
    print(f"Skipped: {snapshot.skipped}")
    print(f"Not Found: {snapshot.not_found}")
    if result.error:
        print(f"Error: {result.error}")
    if result.status != RunStatus.COMPLETED:
        print(f"Resume with: manifest-copier resume {result.session_id}")

    if export_path and result.not_found:
        coordinator.export_not_found(export_path)
        print(f"Exported {len(result.not_found)} not found entries to {export_path}")

    if result.status == RunStatus.CANCELLED:
        return EXIT_CANCELLED
    if result.status == RunStatus.FAILED:
        return EXIT_ERROR
    return EXIT_OK


def handle_copy(args: argparse.Namespace, config: dict) -> int:
    """Handle the copy command.

    Args:
        args: Command line arguments
        config: Loaded configuration file values

    Returns:
        Process exit code
    """
    if args.paste:
        manifest = parse_manifest_text(sys.stdin.read())
    else:
        manifest = read_manifest(args.manifest)

    settings = settings_from_config(config, _setting_overrides(args))
    request_kwargs = {}
    if args.session_id:
        request_kwargs['session_id'] = args.session_id

    request = CopyRequest(
        source_folder=Path(args.source_folder),
        dest_folder=Path(args.dest_folder),
        manifest=manifest,
        settings=settings,
        is_paste_mode=args.paste,
        **request_kwargs
    )

    coordinator = create_coordinator(args, config)
    result = _run_with_interrupt(coordinator, lambda: coordinator.start(request))
    return _report(coordinator, result, args.export_not_found)


def handle_resume(args: argparse.Namespace, config: dict) -> int:
    """Handle the resume command."""
    coordinator = create_coordinator(args, config)
    result = _run_with_interrupt(coordinator, lambda: coordinator.resume(args.session_id))
    return _report(coordinator, result, args.export_not_found)


def handle_list(args: argparse.Namespace, config: dict) -> int:
    """Handle the list command."""
    coordinator = create_coordinator(args, config)
    sessions = coordinator.list_sessions()
    if not sessions:
        print("No resumable sessions found")
        return EXIT_OK

    for checkpoint in sessions:
        print(f"\nSession ID: {checkpoint.session_id}")
        print(f"Saved: {checkpoint.checkpoint_time.isoformat()}")
        print(f"Source: {checkpoint.source_folder}")
        print(f"Destination: {checkpoint.dest_folder}")
        print(f"Progress: {checkpoint.summary}")
    return EXIT_OK


def handle_discard(args: argparse.Namespace, config: dict) -> int:
    """Handle the discard command."""
    coordinator = create_coordinator(args, config)
    if not coordinator.restart(args.session_id):
        return EXIT_ERROR
    print(f"Discarded session {args.session_id}")
    return EXIT_OK


def handle_presets(args: argparse.Namespace, config: dict) -> int:
    """Handle the presets command."""
    if args.name:
        description, extensions = PRESETS[args.name]
        print(f"\n{args.name}: {description}")
        for extension in extensions:
            print(f"  {extension:<7} {format_description(extension)}")
        return EXIT_OK

    for name, (description, extensions) in PRESETS.items():
        print(f"\n{name}: {description}")
        print(f"  {', '.join(extensions)}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="manifest-copier",
        description="Copy the files named in a manifest out of a source tree"
    )
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('-q', '--quiet', action='store_true',
                        help="Do not print periodic progress")
    parser.add_argument('-c', '--config', type=Path,
                        help="Path to config file")

    subparsers = parser.add_subparsers(dest='command', required=True)

    # Copy command
    copy_parser = subparsers.add_parser('copy',
                                        help="Copy the files listed in a manifest")
    copy_parser.add_argument('source_folder', type=str,
                             help="Folder to search (recursively)")
    copy_parser.add_argument('dest_folder', type=str,
                             help="Folder that receives the copies")
    source = copy_parser.add_mutually_exclusive_group(required=True)
    source.add_argument('-m', '--manifest', type=Path,
                        help="Text file with one filename per line")
    source.add_argument('--paste', action='store_true',
                        help="Read the manifest from standard input")
    copy_parser.add_argument('-i', '--session-id', type=str,
                             help="Custom session ID")
    copy_parser.add_argument('--ignore-extension', action='store_true',
                             help="Match names without their extension")
    copy_parser.add_argument('--case-insensitive', action='store_true',
                             help="Match names regardless of case")
    copy_parser.add_argument('--duplicates', choices=[d.value for d in DuplicateHandling],
                             help="What to do when the destination file exists")
    copy_parser.add_argument('--sequential', action='store_true',
                             help="Copy one file at a time")
    copy_parser.add_argument('-t', '--threads', type=int,
                             help="Parallel copy threads (1-16)")
    copy_parser.add_argument('--extensions', type=str,
                             help="Only copy these extensions, e.g. 'jpg,nef'")
    copy_parser.add_argument('--preset', action='append', choices=list(PRESETS),
                             help="Only copy a preset group of formats (repeatable)")
    copy_parser.add_argument('--min-size', type=int,
                             help="Minimum file size in MB")
    copy_parser.add_argument('--max-size', type=int,
                             help="Maximum file size in MB")
    copy_parser.add_argument('--no-verify', action='store_true',
                             help="Skip post-copy verification")
    copy_parser.add_argument('--verify-method', choices=[m.value for m in VerificationMethod],
                             help="Verification strength")
    copy_parser.add_argument('--on-verify-failure',
                             choices=[a.value for a in VerificationFailureAction],
                             help="Action when verification fails")
    copy_parser.add_argument('--export-not-found', type=Path,
                             help="Write unmatched entries to this file")

    # Resume command
    resume_parser = subparsers.add_parser('resume',
                                          help="Resume an interrupted session")
    resume_parser.add_argument('session_id', type=str,
                               help="Session ID to resume")
    resume_parser.add_argument('--export-not-found', type=Path,
                               help="Write unmatched entries to this file")

    # List command
    subparsers.add_parser('list',
                          help="List resumable sessions")

    # Discard command
    discard_parser = subparsers.add_parser('discard',
                                           help="Delete a session checkpoint")
    discard_parser.add_argument('session_id', type=str,
                                help="Session ID to discard")

    # Presets command
    presets_parser = subparsers.add_parser('presets',
                                           help="Show the extension filter presets")
    presets_parser.add_argument('name', nargs='?', choices=list(PRESETS),
                                help="Preset to show in detail")
    return parser


HANDLERS = {
    'copy': handle_copy,
    'resume': handle_resume,
    'list': handle_list,
    'discard': handle_discard,
    'presets': handle_presets,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)
    setup_logging(args.verbose, config.get('log_file'))

    try:
        exit_code = HANDLERS[args.command](args, config)
    except (CopierError, ValueError) as e:
        logger.error(f"Error: {e}")
        sys.exit(EXIT_ERROR)

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
