"""
Locust entry point for surge run profiles.

The ``locustfile`` in this package runs any profile under Locust instead
of the built-in thread scheduler.  Bootstrap, thresholds and cleanup are
the same code the CLI uses; Locust only replaces the lane controller.

Key Concepts Demonstrated:
- ``LoadTestShape`` driven by the profile's linear stages
- ``test_start``/``test_stop`` listeners wrapping bootstrap and cleanup
- One scenario iteration per Locust task, tagged per endpoint
- Process exit code set from the threshold verdict
"""
