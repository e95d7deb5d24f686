import argparse
import os

import uvicorn

from agentmesh.config import HOST, PORT, STORE_BACKEND, store_path


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the AgentMesh HTTP server")
    parser.add_argument("--host", default=HOST, help="Bind host")
    parser.add_argument("--port", type=int, default=PORT, help="Bind port")
    parser.add_argument(
        "--store",
        choices=("sqlite", "json"),
        default=STORE_BACKEND,
        help="Storage backend",
    )
    parser.add_argument(
        "--path",
        default=None,
        help="Database or snapshot file (defaults to the configured path for the backend)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    args = parser.parse_args()
    path = args.path or store_path(args.store)

    if args.reload:
        # The reloader re-imports the app in a child process, which reads config from the environment.
        os.environ["AGENTMESH_STORE"] = args.store
        os.environ["AGENTMESH_JSON" if args.store == "json" else "AGENTMESH_DB"] = path
        target = "agentmesh.main:app"
    else:
        from agentmesh.db.store import build_store
        from agentmesh.main import create_app
        target = create_app(build_store(args.store, path))

    uvicorn.run(
        target,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        timeout_graceful_shutdown=3,
    )


if __name__ == "__main__":
    main()
