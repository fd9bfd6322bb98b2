"""Builds notification messages from a PipelineRun.

Shared by every sink so that chat posts and archived reports carry the
same information.  Optional facts (branch, commit, URLs, failing stage)
are omitted rather than rendered as placeholders.
"""

from __future__ import annotations

from deckhand.models.notifications import MessageKind, NotificationField, NotificationMessage
from deckhand.models.run import PipelineRun
from deckhand.models.stages import RunStatus

STATUS_LABELS: dict[RunStatus, str] = {
    RunStatus.SUCCESS: "SUCCESS",
    RunStatus.PARTIAL_FAILURE: "PARTIAL FAILURE",
    RunStatus.FAILED: "FAILED",
    RunStatus.RUNNING: "RUNNING",
}


def format_duration(seconds: float) -> str:
    """Render a duration as ``1h 2m 3s`` / ``2m 3s`` / ``3s``.

    Examples
    --------
    >>> format_duration(125.4)
    '2m 5s'
    """
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def report_url(run: PipelineRun) -> str | None:
    return run.console_url or run.build_url


def _identity(run: PipelineRun) -> str:
    return f"{run.project} #{run.build_id}"


def build_full_message(run: PipelineRun) -> NotificationMessage:
    """The complete structured report."""
    label = STATUS_LABELS[run.status]
    fields: list[NotificationField] = [
        NotificationField(label="Status", value=label),
        NotificationField(label="Duration", value=format_duration(run.duration_seconds)),
    ]

    commit = run.commit
    if commit.branch:
        fields.append(NotificationField(label="Branch", value=commit.branch))
    if commit.short_commit or commit.commit:
        fields.append(
            NotificationField(label="Commit", value=commit.short_commit or commit.commit or "")
        )
    if commit.author:
        fields.append(NotificationField(label="Author", value=commit.author))
    if commit.message:
        fields.append(NotificationField(label="Message", value=commit.message, short=False))

    if run.stages:
        stage_lines = "\n".join(
            f"{s.stage.value}: {s.state.value}" + (f" ({s.detail})" if s.detail else "")
            for s in run.stages
        )
        fields.append(NotificationField(label="Stages", value=stage_lines, short=False))
    if run.failing_stage is not None:
        fields.append(NotificationField(label="Failing stage", value=run.failing_stage.value))
    if run.reason:
        fields.append(NotificationField(label="Reason", value=run.reason, short=False))
    if run.health:
        health_lines = ", ".join(
            f"{name}: {result.outcome.value}" for name, result in sorted(run.health.items())
        )
        fields.append(NotificationField(label="Health", value=health_lines, short=False))
    if run.console_url:
        fields.append(NotificationField(label="Console", value=run.console_url, short=False))
    if run.build_url:
        fields.append(NotificationField(label="Build", value=run.build_url, short=False))

    text = f"Deployment of {_identity(run)} finished: {label}"
    if run.reason:
        text = f"{text} ({run.reason})"

    return NotificationMessage(
        kind=MessageKind.FULL,
        run_id=run.run_id,
        project=run.project,
        build_id=run.build_id,
        status=run.status,
        title=f"{_identity(run)}: {label}",
        text=text,
        url=report_url(run),
        fields=fields,
    )


def build_minimal_message(run: PipelineRun) -> NotificationMessage:
    """Status, identity and URL only; the fallback when the full report fails."""
    label = STATUS_LABELS[run.status]
    url = report_url(run)
    text = f"{_identity(run)}: {label}"
    if url:
        text = f"{text} {url}"
    return NotificationMessage(
        kind=MessageKind.MINIMAL,
        run_id=run.run_id,
        project=run.project,
        build_id=run.build_id,
        status=run.status,
        title=f"{_identity(run)}: {label}",
        text=text,
        url=url,
    )
