"""
Test suite for the surge load-test core.

This package contains:
- unit/: pure logic tests with fakes and no network
- integration/: threaded scheduler runs and full runs against a fake target
- performance/: the Locust entry point driven by the same run profiles
"""
