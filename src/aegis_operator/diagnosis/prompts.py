"""Prompts sent to the diagnosis backends."""

from __future__ import annotations

from aegis_operator.observation.models import ObservabilitySnapshot

MAX_LOG_CHARS = 3000
MAX_EVENT_MESSAGE_CHARS = 120

SYSTEM_PROMPT = """You are Aegis, an expert Kubernetes SRE assistant embedded inside a self-healing GitOps operator.

Your job is to analyse observability data from a broken Kubernetes workload and return a concise diagnosis plus a minimal, safe remediation patch.

RESPONSE FORMAT
You MUST respond with ONLY valid JSON, no markdown fences, no explanation outside the JSON object:
{
  "rootCause": "<1-2 sentence technical root cause>",
  "patch":     "<minimal Kubernetes strategic-merge-patch YAML for the Deployment, or empty string>",
  "wittyLine": "<one witty sentence about the failure>"
}

PATCH RULES (strictly enforced)
- Only suggest changes to: resources.limits, resources.requests, env, args, livenessProbe, readinessProbe, replicas
- NEVER change the image, imagePullPolicy, or any field outside spec.template.spec.containers[] / spec.replicas
- Every container entry in the patch MUST include its "name"
- If the root cause cannot be fixed by a Deployment patch, return an empty string for "patch"
- The YAML patch must be valid and apply cleanly with kubectl apply --server-side

WITTY LINE RULES
- Reference Kubernetes, cloud-native culture, or general programming humour
- Keep it under 120 characters
- Do not use profanity
"""


def trim_logs(logs: str, max_chars: int = MAX_LOG_CHARS) -> str:
    """Cap log content, keeping the tail (the most recent lines matter most)."""
    if len(logs) <= max_chars:
        return logs
    return "...[truncated]...\n" + logs[-max_chars:]


def _short(message: str) -> str:
    message = message.replace("\n", " ").replace("|", "\\|")
    if len(message) > MAX_EVENT_MESSAGE_CHARS:
        return message[: MAX_EVENT_MESSAGE_CHARS - 3] + "..."
    return message


def build_user_prompt(snapshot: ObservabilitySnapshot) -> str:
    """Render the snapshot as Markdown sections the model can scan quickly."""
    lines = [
        "## Workload Under Investigation",
        f"- **Deployment**: `{snapshot.namespace}/{snapshot.deployment_name}`",
        f"- **Anomaly detected**: {snapshot.anomaly_reason}",
        f"- **Snapshot time**: {snapshot.collected_at.strftime('%Y-%m-%dT%H:%M:%SZ')}",
        "",
    ]

    if snapshot.metrics is not None:
        lines.extend(
            [
                "## Resource Usage (Prometheus)",
                f"- CPU: {snapshot.metrics.cpu_millicores:.2f} millicores",
                f"- Memory: {snapshot.metrics.memory_mib:.2f} MiB",
                "",
            ]
        )

    lines.append(f"## Pod States ({len(snapshot.pods)} pods)")
    for pod in snapshot.pods:
        header = f"### Pod `{pod.name}` - phase: {pod.phase}"
        if pod.node_name:
            header += f" (node: {pod.node_name})"
        lines.extend(["", header])
        for c in pod.containers:
            lines.extend(
                [
                    f"#### Container `{c.name}`",
                    f"- Image: `{c.image}`",
                    f"- State: `{c.state}`",
                    f"- Restart count: {c.restart_count}",
                ]
            )
            if c.last_logs:
                lines.extend(["", "**Recent logs**:", "```", trim_logs(c.last_logs), "```"])

    if snapshot.events:
        lines.extend(
            [
                "",
                f"## Kubernetes Events (most recent {len(snapshot.events)})",
                "| Time | Type | Reason | Object | Message |",
                "|------|------|--------|--------|---------|",
            ]
        )
        for ev in snapshot.events:
            seen = ev.last_seen.strftime("%H:%M:%S") if ev.last_seen else "-"
            lines.append(f"| {seen} | {ev.type} | {ev.reason} | {ev.involved_object} | {_short(ev.message)} |")

    lines.extend(
        [
            "",
            "---",
            "Diagnose the root cause and provide a safe remediation patch following the rules in your system prompt.",
        ]
    )
    return "\n".join(lines)
