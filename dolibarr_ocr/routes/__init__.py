"""
FastAPI routers for all API endpoints.

Each module defines a router for one step of the ingestion workflow
(extract, verify, create missing records, process) plus entities and health.
Dolibarr access goes through the request-scoped client in dependencies.py.
"""
