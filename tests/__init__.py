"""mailwatch test package.

Marks ``tests`` as a package so the root ``conftest.py`` is imported under a
stable name. Unit suites live in ``tests/unit`` (with the in-memory IMAP fake in
``tests/unit/fakes.py``); subprocess checks of the entry point live in
``tests/e2e``.
"""
