"""`taskkit` invariants and boundaries.

This module exists to make repository-wide refactors and boundary tests explicit.

Generic invariants:

1) `taskkit` must not import `epub_build.*`.
2) `taskkit` provides the task graph primitives (Action/Series/Parallel/TaskRef,
   the registry, the runner and its recorder hooks) and a strict option
   namespace helper (ConfigNamespace).
3) `taskkit` does not define project conventions like:
   - which named tasks exist or how entry points are composed
   - what a build "mode" is, or which work is mode-conditional
   - where outputs are written, how they are served, or when a rebuild happens

Project code injects those conventions by registering tasks and passing its
own context object (anything with `logger` and `records`) to `TaskRunner.run`.
"""
