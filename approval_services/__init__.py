"""
approval_services -- outer layer of the template approval workflow.

Production implementations of the kernel's collaborator ports (HTTP
clients for the auth service, the SQL document store), the FastAPI
routes, and the application wiring.  The kernel never imports from here.

Run with any ASGI server, e.g.::

    uvicorn --factory approval_services.app:create_app
"""
