"""auth/ -- Access control and credential lifecycle for ShareNote.

Layer rule: auth/ imports from core/ and kv/ plus third-party libraries.
It does NOT import from api/ or notes/.
api/ and notes/ import from auth/, not the other way around.
"""
