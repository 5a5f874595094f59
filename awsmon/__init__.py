"""awsmon - telemetry agent for managed AWS database and cache instances"""

__version__ = "0.3.0"
