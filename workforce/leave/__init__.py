"""Leave module — leave requests, their lifecycle and auto-processing."""
