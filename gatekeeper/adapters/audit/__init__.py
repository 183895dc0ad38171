"""Audit sink adapters.

Emitting an audit record must never slow down or abort a request, so sinks
buffer and a background task hands records to a writer.
"""
