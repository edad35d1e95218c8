"""Test suite for TickerPulse.

This package contains hermetic tests following the pytest framework.
Test modules mirror the tickerpulse/ package for discoverability.

Testing Philosophy:
    - Use httpx.MockTransport and pytest-mock for network isolation
    - Focus coverage on number handling, session recovery and Watchdog logic
    - Avoid external dependencies - all I/O is faked in-process
"""
