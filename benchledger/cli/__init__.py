"""benchledger CLI — Typer-based command-line interface.

Provides the ``benchledger`` command with subcommands for running
outstanding benchmarks, previewing the plan, showing local state and
pushing new records.

All output uses Rich for formatted terminal display.
"""
