"""Request history adapters.

The abuse detector only reads history. The in-memory log is the default
collaborator and is fed by the application's request-history middleware.
"""
