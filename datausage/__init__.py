"""
Data usage synchronization service.

Reads per-user storage usage from the iRODS ICAT database, records it in the
DE database and publishes the new readings to downstream consumers.
"""
