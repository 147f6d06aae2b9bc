"""Shared component instances for the API routes.

Routes receive their managers through ``Depends`` so tests can swap them
with ``app.dependency_overrides``.
"""
from functools import lru_cache

from bounties import BountyRegistry
from bounties.claims import ClaimWorkflow
from bounties.moderation import ModerationWorkflow
from notifications import NotificationDispatcher
from payments.gateway import PaymentGateway
from payments.reconciler import PaymentReconciler

@lru_cache()
def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher()

@lru_cache()
def get_registry() -> BountyRegistry:
    return BountyRegistry(notifier=get_notifier())

@lru_cache()
def get_moderation() -> ModerationWorkflow:
    return ModerationWorkflow(registry=get_registry(), notifier=get_notifier())

@lru_cache()
def get_claims() -> ClaimWorkflow:
    return ClaimWorkflow(registry=get_registry(), notifier=get_notifier())

@lru_cache()
def get_gateway() -> PaymentGateway:
    return PaymentGateway(registry=get_registry())

@lru_cache()
def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(registry=get_registry(), notifier=get_notifier())
