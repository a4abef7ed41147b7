"""Code shared between the bridge and its gateway wire models."""
