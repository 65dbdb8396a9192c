"""Xiaobao — FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models,
and the read-only aggregate views used by the admin dashboard.

Modules
-------
main
    FastAPI application factory, route handlers, exception handlers and the
    ``main()`` CLI entry point.
models
    Pydantic models for API request validation.
task_views
    Task status payloads, task list summaries and statistics.
"""
