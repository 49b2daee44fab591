"""Process-wide logging and telemetry setup."""
