"""Optional CRM connector contracts and the failure-absorbing wrapper."""

from .base import ConnectionStatus, CRMConnector, GuardedConnector, QueryResult

__all__ = ["ConnectionStatus", "CRMConnector", "GuardedConnector", "QueryResult"]
