"""
Core media logic.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or any infrastructure concerns, so it can be tested in isolation.
"""
