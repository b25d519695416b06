"""
Domain Layer
============

Pure business logic over stored price records. No I/O.
"""
