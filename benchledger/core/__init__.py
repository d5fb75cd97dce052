"""Core engine: ledger, pointer state, fingerprint policy, resolver, run loop."""
