"""
Database backup package.

Dumps MySQL databases into memory and uploads each dump to S3-compatible
object storage. The procedures are shared by the Cloud Functions in
``main.py``, the FastAPI app and the scheduling daemon.
"""
