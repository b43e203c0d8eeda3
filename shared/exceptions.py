"""RFC 9457 Problem Details exception hierarchy.

All API errors extend ProblemDetailError and are converted to
application/problem+json responses by the exception handler middleware.
"""

PROBLEM_BASE_URI = "https://api.vitalsync.dev/problems"


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        violations: list[dict] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.violations = violations
        super().__init__(detail)


class ValidationError(ProblemDetailError):
    def __init__(self, violations: list[dict]):
        super().__init__(
            type_uri=f"{PROBLEM_BASE_URI}/validation-error",
            title="Validation Error",
            status=422,
            detail=f"Request contains {len(violations)} validation error(s)",
            violations=violations,
        )


class InvalidDateRangeError(ProblemDetailError):
    def __init__(self, start: str, end: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE_URI}/invalid-date-range",
            title="Invalid Date Range",
            status=400,
            detail=f"Parameter 'start' ({start}) must be before 'end' ({end})",
        )


class UnsupportedMetricError(ProblemDetailError):
    def __init__(self, metric: str, allowed: list[str]):
        super().__init__(
            type_uri=f"{PROBLEM_BASE_URI}/unsupported-metric",
            title="Unsupported Metric",
            status=422,
            detail=f"Metric '{metric}' is not supported. Must be one of: {', '.join(allowed)}",
        )


class FutureDateError(ProblemDetailError):
    def __init__(self, selected: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE_URI}/future-date",
            title="Future Date",
            status=400,
            detail=f"Date {selected} is in the future; no samples can exist for it yet",
        )
