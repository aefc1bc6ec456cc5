"""Structured error types for the server-pool controller.

This module provides structured exceptions with recovery actions
for handling the failure and signalling scenarios of the pool core.
None of these errors is fatal to the controller process.
"""

from enum import Enum


class RecoveryAction(Enum):
    """Recovery actions for error handling."""

    ABORT = "abort"
    RETRY_NEXT_TICK = "retry_next_tick"
    WAIT_OR_PROVISION = "wait_or_provision"
    PROCEED_EMPTY = "proceed_empty"


class PoolError(Exception):
    """Base exception for server-pool errors."""

    def __init__(
        self, message: str, recovery_action: RecoveryAction = RecoveryAction.ABORT
    ):
        """Initialize pool error.

        Args:
            message: Error message
            recovery_action: Suggested recovery action
        """
        super().__init__(message)
        self.recovery_action = recovery_action


class ProvisionerUnavailableError(PoolError):
    """Error raised when the orchestration platform cannot be reached.

    Covers network failures, API errors and timeouts while creating,
    deleting, describing or listing instances. The operation is abandoned
    and the next natural trigger (usually the next scaling tick) retries.
    """

    def __init__(self, operation: str, reason: str, instance_id: str | None = None):
        """Initialize provisioner error.

        Args:
            operation: Provisioner operation that failed (create, delete, ...)
            reason: Underlying failure description
            instance_id: Instance the operation targeted, if any
        """
        self.operation = operation
        self.reason = reason
        self.instance_id = instance_id

        target = f" for {instance_id}" if instance_id else ""
        message = f"Provisioner {operation}{target} failed: {reason}"

        super().__init__(message, RecoveryAction.RETRY_NEXT_TICK)


class NoCapacityError(PoolError):
    """Signal that no running instance currently has room for a player.

    This is not a fault. The caller may wait and retry, or trigger
    provisioning of a new instance.
    """

    def __init__(self, player_id: str, running_instances: int = 0):
        """Initialize no-capacity signal.

        Args:
            player_id: Player that could not be placed
            running_instances: Number of running instances at selection time
        """
        self.player_id = player_id
        self.running_instances = running_instances

        message = (
            f"No capacity for player {player_id}: "
            f"{running_instances} running instances are full"
        )

        super().__init__(message, RecoveryAction.WAIT_OR_PROVISION)


class AlreadyBoundError(PoolError):
    """Error raised when binding a player that already has a session."""

    def __init__(self, player_id: str, server_id: str):
        """Initialize already-bound error.

        Args:
            player_id: Player identifier
            server_id: Instance the player is currently bound to
        """
        self.player_id = player_id
        self.server_id = server_id

        message = f"Player {player_id} is already bound to server {server_id}"

        super().__init__(message, RecoveryAction.ABORT)


class UnknownInstanceError(PoolError):
    """Error raised when an instance id is not present in the registry."""

    def __init__(self, server_id: str):
        """Initialize unknown-instance error.

        Args:
            server_id: Instance identifier that was not found
        """
        self.server_id = server_id

        super().__init__(f"Unknown server instance: {server_id}", RecoveryAction.ABORT)


class DiscoveryError(PoolError):
    """Error raised when startup discovery of existing instances fails.

    Reconciliation treats this as "zero existing instances found" and
    proceeds to provision the configured minimum.
    """

    def __init__(self, label_selector: str, reason: str):
        """Initialize discovery error.

        Args:
            label_selector: Selector used for discovery
            reason: Underlying failure description
        """
        self.label_selector = label_selector
        self.reason = reason

        message = f"Discovery with selector '{label_selector}' failed: {reason}"

        super().__init__(message, RecoveryAction.PROCEED_EMPTY)
