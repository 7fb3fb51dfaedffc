"""CricClubs data sync host."""

__version__ = "0.1.0"
