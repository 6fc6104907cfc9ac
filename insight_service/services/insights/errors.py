"""
Insight Pipeline Errors

Fatal failures surfaced to the caller. AI generation failures are not
represented here: they are logged and count as zero insights.
"""


class InsightPipelineError(Exception):
    """Base class for fatal insight pipeline failures"""


class ThreadFetchError(InsightPipelineError):
    """Reading messages from the email service failed"""


class InsightStoreError(InsightPipelineError):
    """Reading or writing the user insight store failed"""
