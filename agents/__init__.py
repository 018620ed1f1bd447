# file: agents/__init__.py
from .hunter import Hunter
from .verifier import Verifier
from .enricher import Enricher
from .writer import Writer
from .sender import Sender

__all__ = ["Hunter", "Verifier", "Enricher", "Writer", "Sender"]
