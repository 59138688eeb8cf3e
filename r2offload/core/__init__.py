"""
Core business logic for media offload.

This module is framework-agnostic - it doesn't import FastAPI, httpx,
or any infrastructure concerns. The object store and the record store
are reached through protocols, so the offload and sync logic can be
tested with in-memory fakes.
"""
