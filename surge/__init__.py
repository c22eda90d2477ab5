"""
Surge -- load-test orchestration core.

Drives synthetic clients against an HTTP product API through a staged
concurrency schedule, then gates the run on latency/error thresholds
and cleans up whatever the run created.

Run lifecycle::

    bootstrap credential -> schedule lanes -> evaluate thresholds -> cleanup

Key Concepts Demonstrated:
- Credential fallback chain (provided token -> login -> register + login)
- Linear ramp interpolation feeding a lane-count controller
- Bounded-memory latency histograms shared by concurrent lanes
- k6-style threshold expressions evaluated as a pure function
"""

import logging

__version__ = "0.4.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
