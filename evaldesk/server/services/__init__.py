"""
Server services.

Business logic shared by the API routers: authentication and authorization,
student access restrictions, the evaluation lifecycle, grading, question
replication, purge and archival, statistics, exports, the SSE registry and
the container sandboxes.
"""
