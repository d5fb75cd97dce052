"""Root of the benchledger exception family."""


class BenchLedgerError(RuntimeError):
    """Base class for every fatal condition the run loop reports."""
