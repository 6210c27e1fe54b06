"""
agentrelay Server Package.

This package contains the web server of the agentrelay platform.
It includes the API definition, authentication, real-time streaming and the
service layer wiring the agent engine and the webhook subsystem together.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration, constants and database connections.
    services: Service layer and FastAPI dependencies.
    exception_handlers: Mapping of domain errors to HTTP responses.
"""
