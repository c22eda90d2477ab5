"""
Integration tests for the surge load-test core.

Tests here use real threads and, where HTTP is involved, an in-process
Flask fake of the product API served on localhost.  They demonstrate:
- Lane ramp-up, ramp-down and graceful stop timing
- The full bootstrap -> schedule -> evaluate -> cleanup lifecycle
- Exit codes and JSON artifacts produced through the CLI
"""
