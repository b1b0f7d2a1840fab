"""HTTP API of the evaluation server."""
