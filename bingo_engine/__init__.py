"""Round synchronization and game state engine for the multiplayer bingo client."""

__version__ = "0.1.0"
