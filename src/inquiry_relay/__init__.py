"""Admission control and reliable delivery of website form submissions.

This package receives validated inquiry forms and takes care of everything
after validation:

- Fixed-window rate limiting per hashed client identity
- Durable storage of accepted submissions
- Concurrent confirmation and operator notification mails
- Durable queue of failed deliveries with periodic retry and escalation
- Prometheus metrics, FastAPI REST API and an operator CLI
- SQLite or PostgreSQL persistence

Example:
    Basic usage with the FastAPI application::

        from inquiry_relay.config import load_config
        from inquiry_relay.pipeline import SubmissionPipeline
        from inquiry_relay.api import create_app

        pipeline = SubmissionPipeline(load_config())
        app = create_app(pipeline, api_token="secret")
"""
