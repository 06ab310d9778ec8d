"""Shared library code for deckwatch: errors, logging and terminal helpers."""
