"""Test suite for livecache.

Test Structure:
- unit/: Unit tests per package (keys, caching, backend, bridge, context, config, utils, cli)
- conftest.py: Shared fixtures (in-memory backend, bound bridge/cache pairs, polling helper)

Async tests run in pytest-asyncio auto mode; no markers needed.
"""
