from __future__ import annotations


class OrderError(Exception):
    """Base class for failures raised by the order services."""


class ValidationError(OrderError, ValueError):
    pass


class InvalidTransition(OrderError, ValueError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f'Cannot move order from {current} to {target}')
        self.current = current
        self.target = target


class OrderNotFound(OrderError, LookupError):
    def __init__(self, order_id: int) -> None:
        super().__init__('Order not found')
        self.order_id = order_id


class StaleOrder(OrderError, RuntimeError):
    """The order changed since the caller last read it."""


class PersistenceFailure(OrderError, RuntimeError):
    """A store write failed; nothing from the operation was kept."""

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(message)
        self.operation = operation
