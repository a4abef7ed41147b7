"""OpenClaw gateway bridge."""
