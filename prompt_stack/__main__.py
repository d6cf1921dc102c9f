"""
Command line entry point: serve a workspace over HTTP.

    python -m prompt_stack --port 8765 --storage ~/.prompt-stack
"""

import argparse
import logging
import os

from aiohttp import web

from .api_routes import create_app
from .config import ConfigError, get_config_path, load_settings
from .core.storage import WorkspaceStorage

logger = logging.getLogger("prompt_stack")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prompt-stack", description="Serve a Prompt Stack workspace over HTTP")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8765, help="Port to listen on (default: 8765)")
    parser.add_argument("--storage", default=None, help="Workspace directory (default: $PROMPT_STACK_HOME or ~/.prompt-stack)")
    parser.add_argument("--settings", default=None, help="Settings file used to seed a new workspace")
    parser.add_argument("--autosave-delay", type=float, default=None, help="Autosave debounce in seconds")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv=None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = WorkspaceStorage(args.storage)
    workspace = storage.load_workspace()

    if not os.path.exists(storage.storage_file):
        try:
            settings = load_settings(args.settings or get_config_path())
        except ConfigError as e:
            logger.error(f"{e}; starting with default settings")
        else:
            workspace.settings = settings

    app = create_app(workspace, storage, autosave_delay=args.autosave_delay)
    logger.info(f"Serving workspace from {storage.storage_file} on http://{args.host}:{args.port}")
    web.run_app(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
