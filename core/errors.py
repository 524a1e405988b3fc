"""
Error taxonomy for the reminder pipeline.

- EligibilityQueryError: the subscriber store could not be queried; the run is aborted
- ConcurrentRunRejected: a trigger arrived while another run held the run lock
- PushTransportError: the push service could not be reached at all (no HTTP response)

A tick that does not match the schedule is not an error (on_tick returns None),
and expired / failed deliveries are reported as outcome statuses, never raised.
"""


class ReminderError(Exception):
    """Base class for reminder pipeline errors."""

    code = "reminder_error"
    status_code = 500


class EligibilityQueryError(ReminderError):
    code = "eligibility_query_failed"
    status_code = 503


class ConcurrentRunRejected(ReminderError):
    code = "reminder_run_active"
    status_code = 409

    def __init__(self, message: str = "A reminder run is already in progress"):
        super().__init__(message)


class PushTransportError(ReminderError):
    code = "push_transport_error"
    status_code = 502
