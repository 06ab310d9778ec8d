"""Command line interface for deckwatch."""
