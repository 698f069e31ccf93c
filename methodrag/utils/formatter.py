from typing import Any, Dict, List, Literal, Optional

from methodrag.models import Methodology, MethodologySearchResult

OutputFormat = Literal["text", "markdown"]

class ResultFormatter:
    """Human-readable rendering of search results, methodologies and sync status."""

    def __init__(self, format_type: OutputFormat = "text", max_length: int = 400):
        """Initialize the formatter with desired output format and settings."""
        self.format_type = format_type
        self.max_length = max_length

    def _truncate_text(self, text: str, max_length: Optional[int] = None) -> str:
        """Smartly truncate text at sentence boundary."""
        if not text:
            return ""

        max_len = max_length or self.max_length
        if len(text) <= max_len:
            return text

        truncated = text[:max_len]
        last_period = truncated.rfind('.')
        if last_period > max_len * 0.7:  # Only truncate at sentence if it's not too short
            truncated = truncated[:last_period + 1]
        else:
            last_space = truncated.rfind(' ')
            if last_space > 0:
                truncated = truncated[:last_space]

        return f"{truncated}..."

    @staticmethod
    def _format_score(score: float) -> str:
        return f"{score * 100:.1f}%"

    def _heading(self, text: str) -> str:
        return f"### {text}" if self.format_type == "markdown" else text

    def format_search_result(self, rank: int, result: MethodologySearchResult) -> str:
        methodology = result.methodology
        sections = [
            self._heading(f"{rank}. {methodology.name} ({methodology.id} v{methodology.version})"),
            f"Fit: {self._format_score(result.fit_score)} | "
            f"Score: {self._format_score(result.score)} | Source: {result.source}",
            f"Category: {methodology.category}",
            self._truncate_text(methodology.description),
            f"Why: {result.reasoning}",
            "---"
        ]
        return "\n".join(sections)

    def format_methodology(self, methodology: Methodology) -> str:
        bullet = "-" if self.format_type == "markdown" else " "
        stage_lines = [
            f"{bullet} {stage.order}. {stage.name}: {self._truncate_text(stage.description, 120)}"
            for stage in methodology.stages
        ]
        sections = [
            self._heading(f"{methodology.name} ({methodology.id} v{methodology.version})"),
            f"Author: {methodology.author_name}",
            f"Category: {methodology.category}",
            f"Tags: {', '.join(methodology.tags) or '-'}",
            f"Validated: {'yes' if methodology.validated else 'no'}",
            self._truncate_text(methodology.description),
            "Stages:",
            *stage_lines,
        ]
        return "\n".join(sections)

    def format_methodology_list(self, methodologies: List[Methodology]) -> str:
        if not methodologies:
            return "No methodologies in catalog"
        return "\n".join(
            f"{m.id:<30} {m.version:<10} {m.category:<16} {m.name}" for m in methodologies
        )

    def format_sync_status(self, status: Dict[str, Any]) -> str:
        lines = [
            f"Repository: {status.get('repoRef')}",
            f"State: {status.get('state')}",
            f"Auto-sync: {'on' if status.get('autoSyncEnabled') else 'off'}",
            f"Last sync: {status.get('lastSync') or 'never'}",
        ]
        last_result = status.get("lastResult")
        if last_result:
            lines.append(self.format_sync_result(last_result))
        return "\n".join(lines)

    @staticmethod
    def format_sync_result(result: Dict[str, Any]) -> str:
        lines = [
            f"Added: {', '.join(result['added']) or '-'}",
            f"Updated: {', '.join(result['updated']) or '-'}",
            f"Errors: {len(result['errors'])}",
        ]
        lines.extend(f"  {error}" for error in result["errors"])
        if result.get("cancelled"):
            lines.append("Run was cancelled before all files were processed")
        return "\n".join(lines)

def format_results(results: List[MethodologySearchResult], format_type: OutputFormat = "text") -> str:
    """Format a ranked result list for display."""
    if not results:
        return "No matching methodologies found"
    formatter = ResultFormatter(format_type=format_type)
    return "\n".join(formatter.format_search_result(i, r) for i, r in enumerate(results, 1))
