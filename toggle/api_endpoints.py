"""
Status endpoints served by the main toggle.

- GET /      -> current topology as JSON. Follower toggles poll this to copy the
                main's setup, which is what allows more than one load balancer.
- OPTIONS /  -> empty 200, browsers send it before the real request.
"""

from fastapi import APIRouter, Request, Response

router = APIRouter()


def _get_app_state(request: Request):
    return request.app.state


@router.get("/")
def current_topology(request: Request):
    # a copy taken under the store lock, never waits on a running check
    store = _get_app_state(request).topology_store
    return store.snapshot().to_dict()


@router.options("/")
def preflight():
    return Response(status_code=200)
