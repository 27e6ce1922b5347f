import importlib.metadata

from .main import main

try:
    __version__ = importlib.metadata.version("repl-orchestrator")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"
