"""Exception base shared by the readiness poller and the process supervisor."""


class SupervisorError(RuntimeError):
    """Base for supervisor failures surfaced to the caller."""
