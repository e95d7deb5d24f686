"""
AgentMesh Configuration
"""
import os
import json
from pathlib import Path

# Project root
BASE_DIR = Path(__file__).resolve().parent.parent

_repo_data_dir = BASE_DIR / "data"
_user_data_dir = Path.home() / ".agentmesh"

config_data = {}
_config_file = Path(os.getenv("AGENTMESH_CONFIG") or BASE_DIR / "data" / "config.json")
if _config_file.exists():
    try:
        with open(_config_file, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except (OSError, ValueError):
        config_data = {}

# Installed package mode normally runs outside a repository checkout.
_data_dir = _repo_data_dir if _repo_data_dir.exists() else _user_data_dir

# Storage backend: "sqlite" (relational) or "json" (whole-file snapshot)
STORE_BACKEND = os.getenv("AGENTMESH_STORE", config_data.get("STORE_BACKEND", "sqlite")).lower()
DB_PATH = os.getenv("AGENTMESH_DB", config_data.get("DB_PATH", str(_data_dir / "agentmesh.db")))
JSON_PATH = os.getenv("AGENTMESH_JSON", config_data.get("JSON_PATH", str(_data_dir / "agentmesh.json")))

# HTTP server - default to localhost only
HOST = os.getenv("AGENTMESH_HOST", config_data.get("HOST", "127.0.0.1"))
PORT = int(os.getenv("AGENTMESH_PORT", config_data.get("PORT", "3000")))

# Message listing: default page size and hard cap for ?limit=
MSG_LIST_DEFAULT_LIMIT = 50
MSG_LIST_MAX_LIMIT = 200

MESH_VERSION = "1.0.0"


def store_path(backend: str) -> str:
    """Return the configured on-disk location for the given backend."""
    return JSON_PATH if backend == "json" else DB_PATH


def get_config_dict():
    return {
        "HOST": HOST,
        "PORT": PORT,
        "STORE_BACKEND": STORE_BACKEND,
        "STORE_PATH": store_path(STORE_BACKEND),
        "MSG_LIST_DEFAULT_LIMIT": MSG_LIST_DEFAULT_LIMIT,
        "MSG_LIST_MAX_LIMIT": MSG_LIST_MAX_LIMIT,
    }
