"""Program domain exports."""
from .entity import Program
from .repository import ProgramRepository

__all__ = ["Program", "ProgramRepository"]
