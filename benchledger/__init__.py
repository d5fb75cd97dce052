"""benchledger: incremental framework benchmarking with an append-only record ledger.

Walks a framework's commit history, builds the framework and a benchmark
application at each commit, runs load tests against the application and
records every build and run as an immutable JSON record. Builds are reused
across runs when their inputs have not changed.
"""

__version__ = "0.1.0"

from benchledger.core.orchestrator import Orchestrator, RunReport
from benchledger.cli.app import app as cli_app

__all__ = ["Orchestrator", "RunReport", "cli_app", "__version__"]
