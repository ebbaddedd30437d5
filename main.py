"""
MiniDoc — In-Memory Document Query Engine
=========================================
Entry point for the bookstore demo.

Usage:
    python main.py [options]

Options:
    --help              Show help
    --data PATH         Load books from a JSON array file
    --page N            Page shown by the pagination task (default 1)
    --page-size N       Books per page (default: MINIDOC_PAGE_SIZE or 5)
    --mode M            Output mode: table, vertical, raw
    --verbose           Debug logging

Default:
    Seed the built-in sample books and run every task.
"""

import logging
import sys


def print_help():
    print("""
MiniDoc — In-Memory Document Query Engine

Usage:
    python main.py [--data books.json] [--page N] [--page-size N]
                   [--mode table|vertical|raw] [--verbose]

Options:
    --help          Show this help
    --data PATH     JSON array of book objects (default: built-in sample)
    --page N        Page for the pagination task (1-based)
    --page-size N   Books per page
    --mode M        Output mode (table/vertical/raw)
    --verbose       Log engine activity at DEBUG level

Environment:
    MINIDOC_LOCK_TIMEOUT, MINIDOC_FAST_SCAN_THRESHOLD,
    MINIDOC_SLOW_SCAN_THRESHOLD, MINIDOC_PAGE_SIZE
""")


def _int_arg(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        print(f"Error: {name} expects an integer, got {value!r}", file=sys.stderr)
        sys.exit(2)


def run_demo(data_path=None, page: int = 1, page_size=None, mode: str = "table") -> int:
    """Run the bookstore script. Returns the process exit code."""
    from cli.renderer import Renderer
    from cli.script import BookstoreScript, ScriptOptions
    from cli.session import Session
    from storage.errors import EngineError

    renderer = Renderer()
    renderer.mode = mode
    renderer.show_timer = False

    try:
        with Session(data_path) as session:
            options = ScriptOptions(page=page,
                                    page_size=page_size or session.config.default_page_size)
            renderer.render_message(f"Loaded {session.loaded} book(s) into '{session.collection.name}'")
            code = BookstoreScript(session, renderer, options).run()
        renderer.render_message("Session closed")
        return code
    except (EngineError, ValueError) as e:
        renderer.render_error(e)
        return 1


def main() -> None:
    """Parse CLI arguments and dispatch."""
    from cli.renderer import MODES

    args = sys.argv[1:]

    if "--help" in args or "-h" in args:
        print_help()
        return

    data_path = None
    page = 1
    page_size = None
    mode = "table"
    verbose = False

    i = 0
    while i < len(args):
        if args[i] == "--data" and i + 1 < len(args):
            data_path = args[i + 1]
            i += 2
        elif args[i] == "--page" and i + 1 < len(args):
            page = _int_arg("--page", args[i + 1])
            i += 2
        elif args[i] == "--page-size" and i + 1 < len(args):
            page_size = _int_arg("--page-size", args[i + 1])
            i += 2
        elif args[i] == "--mode" and i + 1 < len(args):
            mode = args[i + 1]
            if mode not in MODES:
                print(f"Unknown mode: {mode} (expected one of {', '.join(MODES)})", file=sys.stderr)
                sys.exit(2)
            i += 2
        elif args[i] == "--verbose":
            verbose = True
            i += 1
        else:
            print(f"Unknown option: {args[i]}", file=sys.stderr)
            print_help()
            sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(run_demo(data_path, page, page_size, mode))


if __name__ == "__main__":
    main()
