# file: app/orchestrator.py
from typing import AsyncGenerator, Iterable, List, Optional
from app.errors import ConfigurationError, ExternalServiceError
from app.schema import StageReport
from app.logging_utils import log_event, logger
from app.services.registry import ClientRegistry
from agents import Hunter, Verifier, Enricher, Writer, Sender

# Canonical order; a run may select any subset, executed in this order
STAGES = ("discover", "verify", "enrich", "draft", "dispatch")

RUNNERS = {
    "discover": Hunter,
    "verify": Verifier,
    "enrich": Enricher,
    "draft": Writer,
    "dispatch": Sender,
}

AGENTS = {
    "discover": "hunter",
    "verify": "verifier",
    "enrich": "enricher",
    "draft": "writer",
    "dispatch": "sender",
}


def select_stages(stages: Optional[Iterable[str]] = None) -> List[str]:
    if not stages:
        return list(STAGES)
    wanted = [s.strip().lower() for s in stages]
    unknown = [s for s in wanted if s not in RUNNERS]
    if unknown:
        raise ValueError(f"unknown stage(s): {', '.join(unknown)}; expected {', '.join(STAGES)}")
    return [s for s in STAGES if s in wanted]


def summarize(report: StageReport) -> str:
    parts = [f"selected {report.selected}", f"processed {report.processed}",
             f"skipped {report.skipped}", f"errors {report.errors}"]
    if report.rejected_by_reason:
        parts.append("rejected " + ", ".join(f"{k}={v}" for k, v in sorted(report.rejected_by_reason.items())))
    return " | ".join(parts)


class Orchestrator:
    def __init__(self, registry: Optional[ClientRegistry] = None):
        self.registry = registry or ClientRegistry()

    async def run_stage(self, stage: str) -> StageReport:
        """Run one stage over the store; ConfigurationError propagates to the caller."""
        runner = RUNNERS[select_stages([stage])[0]](self.registry)
        report = await runner.run()
        logger.info("%s: %s", stage, summarize(report))
        return report

    async def run_pipeline(self, stages: Optional[Iterable[str]] = None) -> AsyncGenerator[dict, None]:
        """Run the selected stages in order, streaming one event per stage boundary"""
        selected = select_stages(stages)
        yield log_event("orchestrator", f"Pipeline start: {' -> '.join(selected)}", "pipeline_start",
                        {"stages": selected})

        reports = {}
        for stage in selected:
            agent = AGENTS[stage]
            yield log_event(agent, f"Starting {stage}", "agent_start", {"stage": stage})
            try:
                report = await self.run_stage(stage)
            except ConfigurationError as e:
                logger.error("%s aborted: %s", stage, e)
                yield log_event(agent, f"Configuration error: {e}", "error", {"stage": stage, "error": str(e)})
                yield log_event("orchestrator", "Pipeline aborted", "pipeline_end",
                                {"aborted": True, "reports": reports})
                return
            except ExternalServiceError as e:
                # stage-wide outage (store down, provider unreachable at startup); next stages still run
                logger.error("%s failed: %s", stage, e)
                yield log_event(agent, f"Stage failed: {e}", "error", {"stage": stage, "error": str(e)})
                continue

            reports[stage] = report.model_dump()
            yield log_event(agent, summarize(report), "agent_end", reports[stage])

        yield log_event("orchestrator", "Pipeline complete", "pipeline_end", {"aborted": False, "reports": reports})
