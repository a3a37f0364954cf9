"""Deploy log streaming."""

from opsdeck.deploy.stream import StreamSession, format_sse, stream_deploy_logs, validate_log_path

__all__ = ["StreamSession", "format_sse", "stream_deploy_logs", "validate_log_path"]
