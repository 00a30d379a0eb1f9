"""Broker services."""

from gitops_broker.services.lifecycle import LifecycleCoordinator, get_coordinator

__all__ = ['LifecycleCoordinator', 'get_coordinator']
