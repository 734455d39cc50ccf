"""
Request-scoped accessors for the process-wide collaborators built in the
application lifespan. Tests swap them through `app.dependency_overrides`.
"""
from fastapi import Request

from app.gateways.base import BaseGateway
from app.services.initiation import OrderInitiator
from app.services.reconciliation import ReconciliationEngine


def get_gateway(request: Request) -> BaseGateway:
    return request.app.state.gateway


def get_reconciler(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciler


def get_initiator(request: Request) -> OrderInitiator:
    return request.app.state.initiator
