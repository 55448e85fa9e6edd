"""
Core hotlink-protection logic.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or any infrastructure concerns. The access decisions and the request
pipeline can be tested without an HTTP server or an object store.
"""
