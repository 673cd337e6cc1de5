"""Exception types shared by the orchestrator, scheduler and tool layer."""

from __future__ import annotations


class OrchestrationError(Exception):
    """A run cannot be executed. Terminal for the run; carries a short code."""

    code = "orchestration_error"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        if code:
            self.code = code
        super().__init__(message or self.code)


class RunNotFound(OrchestrationError):
    code = "run_not_found"


class AgentNotFound(OrchestrationError):
    code = "agent_not_found"


class AgentSleeping(OrchestrationError):
    code = "agent_sleeping"


class ProviderConfigError(OrchestrationError):
    code = "provider_config_error"


class ContextAssemblyError(OrchestrationError):
    code = "context_assembly_failed"


class RetryableError(Exception):
    """Infrastructure failure (database, redis, broker). The queue may retry."""


class RunCancelled(Exception):
    """Raised at a cancellation checkpoint once the run's cancel flag is set."""


class ScheduleError(ValueError):
    reason = "invalid_schedule"


class InvalidTimezone(ScheduleError):
    reason = "invalid_timezone"


class InvalidCronExpression(ScheduleError):
    reason = "invalid_cron"
