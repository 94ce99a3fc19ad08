# Package surface: the lib namespace and the module entry point.
from . import lib  # so: from modules.gamesdb_crawl import lib
from .main import run  # so: from modules.gamesdb_crawl import run

__all__ = ["lib", "run"]
