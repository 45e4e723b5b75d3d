class IPAssignError(Exception):
    message = "IP assignment error"

    def __init__(self, additional_message=None):
        message = self.message
        if additional_message:
            message += "\n" + additional_message

        super().__init__(message)


class ConfigurationError(IPAssignError):
    message = "Invalid configuration"


class NoAddressAvailable(IPAssignError):
    """Sentinel: the address pool has no unattached address left."""

    message = "No public IP addresses available"


class AssignmentError(IPAssignError):
    message = "Failed to assign IP address"


class InterfaceNotFound(AssignmentError):
    message = "No valid interface found"


class InstanceConfigurationError(AssignmentError):
    message = "Unhandled instance network configuration"


class OperationFailed(AssignmentError):
    message = "Cloud operation failed"


class OperationCancelled(AssignmentError):
    message = "Operation cancelled"


class RollbackError(IPAssignError):
    """The attach failed and the marker could not be cleared afterwards.

    Node annotation and cloud state now disagree and must be fixed by hand.
    """

    message = "CRITICAL: manual remediation required"

    def __init__(self, attach_error: Exception, rollback_error: Exception, additional_message=None):
        self.attach_error = attach_error
        self.rollback_error = rollback_error
        details = f"attach failed: {attach_error}; rollback failed: {rollback_error}"
        if additional_message:
            details = additional_message + "\n" + details
        super().__init__(details)
