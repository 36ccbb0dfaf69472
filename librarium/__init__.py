"""
Librarium core package.

The library subsystem tracks a reader's books through the forward-only
reading-state machine, records every mutation in an append-only event log,
derives dashboard statistics from the current collection, and reports every
outcome through layered, classified results.
"""
