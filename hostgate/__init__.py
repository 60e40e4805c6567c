"""hostgate: authenticated gateway and job lifecycle tracking for game-server hosts."""

__version__ = "1.0.0"
