"""Turn orchestration: context budgeting, streaming tool loop, and background work.

Import concrete modules directly; this package re-exports nothing so that the
services layer can depend on :mod:`.errors` without import cycles.
"""
