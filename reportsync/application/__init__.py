"""Application layer.

The job tracker orchestrates the engine components for the UI; the container
wires concrete implementations of the ports.

Rule of thumb:
UI -> application.job_tracker -> core components -> ports/adapters
"""
