"""Typer sub-applications for the ``reviewrouter`` command."""
