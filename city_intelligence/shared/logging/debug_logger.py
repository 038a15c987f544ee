"""
Per-session debug logs for city intelligence runs.

When the orchestrator is configured with ``debug_logs_dir`` every session
gets a folder holding ``session_logs.json`` (JSON Lines: agent runs, LLM
calls with token cost, reflections, the final summary) and a
``quality_report.md`` that walks through each city's reflection trail.
"""

import json
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


# USD per 1M tokens
MODEL_COSTS = {
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-5-mini": {"input": 0.25, "output": 2.00},
}

_loggers: Dict[str, "DebugLogger"] = {}


def get_or_create_logger(session_id: str, logs_dir: str = "logs") -> "DebugLogger":
    """
    Return the session's DebugLogger, creating it on first use.

    Every agent of a session writes through the same instance so usage
    accumulates into one summary.
    """
    logger = _loggers.get(session_id)
    if logger is None:
        logger = _loggers[session_id] = DebugLogger(session_id, logs_dir)
    return logger


def remove_logger(session_id: str) -> None:
    _loggers.pop(session_id, None)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """USD cost of one call; unknown models are priced at zero."""
    rates = MODEL_COSTS.get(model)
    if rates is None:
        return 0.0
    return (input_tokens * rates["input"] + output_tokens * rates["output"]) / 1_000_000


class DebugLogger:
    """
    Writes one session's debug trail and accumulates its LLM usage.

    Usage is tracked both in total and per agent so the summary shows
    which agents drive cost.
    """

    def __init__(self, session_id: str, logs_dir: str = "logs"):
        self.session_id = session_id
        self.session_dir = Path(logs_dir) / session_id
        self.log_file = self.session_dir / "session_logs.json"
        self.report_file = self.session_dir / "quality_report.md"

        self.session_dir.mkdir(parents=True, exist_ok=True)

        self._usage_by_agent: Dict[str, Dict[str, float]] = defaultdict(
            lambda: {"calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0.0}
        )
        self._llm_duration_ms = 0.0
        self._agent_runs = 0
        self._agent_failures = 0
        self._reflections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)

    def _write(self, entry_type: str, **fields: Any) -> Dict[str, Any]:
        entry = {
            "type": entry_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            **fields,
        }
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        return entry

    def log_llm_call(
        self,
        agent_name: str,
        city_id: Optional[str],
        system_prompt: str,
        user_prompt: str,
        response: str,
        duration_ms: float,
        input_tokens: int,
        output_tokens: int,
        model: str = "gpt-4.1-mini",
    ) -> None:
        """Record one LLM call with its prompts, reply, timing and cost."""
        cost = calculate_cost(model, input_tokens, output_tokens)

        usage = self._usage_by_agent[agent_name]
        usage["calls"] += 1
        usage["input_tokens"] += input_tokens
        usage["output_tokens"] += output_tokens
        usage["cost_usd"] += cost
        self._llm_duration_ms += duration_ms

        self._write(
            "llm_call",
            agent=agent_name,
            city_id=city_id,
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response=response,
            duration_ms=round(duration_ms, 2),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cost_usd=round(cost, 6),
        )

    def log_agent_run(
        self,
        agent_name: str,
        city_id: str,
        iteration: int,
        success: bool,
        confidence: int,
        duration_ms: float,
        gaps: List[str],
        error: Optional[str] = None,
    ) -> None:
        self._agent_runs += 1
        if not success:
            self._agent_failures += 1

        self._write(
            "agent_run",
            agent=agent_name,
            city_id=city_id,
            iteration=iteration,
            success=success,
            confidence=confidence,
            duration_ms=round(duration_ms, 2),
            gaps=gaps,
            error=error,
        )

    def log_reflection(self, city_id: str, reflection: Dict[str, Any]) -> None:
        """Record a reflection and keep it for the quality report."""
        self._reflections[city_id].append(reflection)
        self._write("reflection", city_id=city_id, **reflection)

    def log_session_summary(self, total_cities: int, average_quality: float) -> Dict[str, Any]:
        """
        Write the session totals and the quality report.

        Returns:
            The summary entry that was written
        """
        agents = {
            name: {**usage, "cost_usd": round(usage["cost_usd"], 6)}
            for name, usage in sorted(self._usage_by_agent.items())
        }
        input_tokens = sum(int(u["input_tokens"]) for u in agents.values())
        output_tokens = sum(int(u["output_tokens"]) for u in agents.values())

        summary = self._write(
            "session_summary",
            total_cities=total_cities,
            average_quality=average_quality,
            agent_runs=self._agent_runs,
            agent_failures=self._agent_failures,
            llm_call_count=sum(int(u["calls"]) for u in agents.values()),
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            total_cost_usd=round(sum(u["cost_usd"] for u in agents.values()), 6),
            total_llm_duration_ms=round(self._llm_duration_ms, 2),
            usage_by_agent=agents,
        )
        self.write_quality_report()
        return summary

    def write_quality_report(self) -> str:
        """
        Render every city's reflection trail as markdown.

        Returns:
            Path to the written report
        """
        lines = [
            f"# Quality Report - Session {self.session_id}",
            "",
            f"*Generated at: {datetime.now(timezone.utc).isoformat()}*",
            "",
        ]
        for city_id, reflections in self._reflections.items():
            lines += [f"## {city_id}", ""]
            for r in reflections:
                lines.append(
                    f"### Iteration {r.get('iteration')}: "
                    f"{r.get('quality_score')}/100 ({r.get('verdict')})"
                )
                lines.append("")
                for category, score in sorted(r.get("category_scores", {}).items()):
                    lines.append(f"- `{category}`: {score}")
                for gap in r.get("gaps", []):
                    lines.append(f"- **Gap** ({gap.get('category')}): {gap.get('description')}")
                lines.append("")

        lines.append(f"*Cities: {len(self._reflections)}*")

        with open(self.report_file, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        return str(self.report_file)
