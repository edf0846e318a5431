from __future__ import annotations

from sleuth.config.load_config import AppConfig
from sleuth.domains.crawl import CrawlToolset
from sleuth.domains.graph import GraphToolset
from sleuth.domains.images import ImageToolset
from sleuth.loop.dispatcher import Toolset
from sleuth.loop.engine import LoopController, LoopSettings, RunOutcome
from sleuth.loop.oracle import DecisionOracle
from sleuth.tools.media import MediaAnalyzer
from sleuth.utils.content_cache import ContentCache

from .types import AgentContext


TASKS = ("graph", "images", "crawl")


class UnknownTaskError(ValueError):
    pass


def build_toolset(task: str, *, config: AppConfig, llm: object, verifier: object) -> Toolset:
    if task == "graph":
        g = config.tasks.graph
        return GraphToolset(
            verifier=verifier,
            task_name=g.task_name,
            note_path=g.note_path,
            people_endpoint=g.people_endpoint,
            places_endpoint=g.places_endpoint,
            goal=g.goal,
            system_prompt=g.system_prompt,
        )
    if task == "images":
        i = config.tasks.images
        return ImageToolset(
            verifier=verifier,
            llm=llm,
            task_name=i.task_name,
            work_dir=i.work_dir,
            image_url_template=i.image_url_template,
            image_suffix=i.image_suffix,
            goal=i.goal,
            system_prompt=i.system_prompt,
            describe_prompt=i.describe_prompt,
            check_prompt=i.check_prompt,
            translate_prompt=i.translate_prompt,
        )
    if task == "crawl":
        c = config.tasks.crawl
        analyzer = None
        if config.media.enrich_pages:
            analyzer = MediaAnalyzer(
                llm,
                cache=ContentCache(config.media.cache_dir),
                timeout_s=config.http.timeout_s,
                image_prompt=config.media.image_prompt,
            )
        return CrawlToolset(
            verifier=verifier,
            task_name=c.task_name,
            questions_path=c.questions_path,
            start_url=c.start_url,
            max_page_chars=c.max_page_chars,
            goal=c.goal,
            system_prompt=c.system_prompt,
            analyzer=analyzer,
            max_workers=config.media.max_workers,
            timeout_s=config.http.timeout_s,
        )
    raise UnknownTaskError(f"Unknown task {task!r}: must be one of {list(TASKS)}")


def loop_settings(config: AppConfig, *, max_iterations: int | None = None) -> LoopSettings:
    return LoopSettings(
        max_iterations=int(max_iterations or config.loop.max_iterations),
        forced_commitment_every=config.loop.forced_commitment_every,
        history_window=config.loop.history_window,
        forced_commitment_text=config.prompts.forced_commitment,
    )


class SolverAgent:
    """Wires one task's toolset, oracle and loop settings together and runs the loop."""

    name = "solver"

    def run(
        self,
        ctx: AgentContext,
        *,
        task: str,
        max_iterations: int | None = None,
        goal: str | None = None,
    ) -> RunOutcome:
        cfg = ctx.config
        toolset = build_toolset(task, config=cfg, llm=ctx.llm, verifier=ctx.verifier)
        oracle = DecisionOracle(
            ctx.llm,
            system_prompt=toolset.system_prompt,
            schema=toolset.schema,
            decision_template=cfg.prompts.decision_template,
            temperature=cfg.loop.temperature,
        )
        state = toolset.bootstrap()
        controller = LoopController(
            toolset=toolset,
            oracle=oracle,
            settings=loop_settings(cfg, max_iterations=max_iterations),
        )
        return controller.run(ctx, goal=goal or toolset.goal(), state=state)
