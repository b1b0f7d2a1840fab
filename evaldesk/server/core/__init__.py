"""Core configuration of the evaldesk server."""
