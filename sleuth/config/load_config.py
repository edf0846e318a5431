from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_positive_int(value: Any, *, key: str) -> int:
    n = _as_int(value, key=key)
    if n < 1:
        raise ConfigError(f"Invalid {key}: must be >= 1, got {n}")
    return n


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _as_bool(value: Any, *, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Invalid bool for {key}: {value!r}")


def _resolve_dir(value: Any, *, key: str, repo_dir: Path) -> str:
    p = Path(_as_str(value, key=key)).expanduser()
    if not p.is_absolute():
        p = repo_dir / p
    return str(p.resolve())


@dataclass(frozen=True)
class LoopConfig:
    max_iterations: int
    forced_commitment_every: int
    history_window: int
    temperature: float


@dataclass(frozen=True)
class HTTPConfig:
    timeout_s: float


@dataclass(frozen=True)
class MediaConfig:
    max_workers: int
    cache_dir: str
    enrich_pages: bool
    image_prompt: str


@dataclass(frozen=True)
class VerifierConfig:
    report_path: str


@dataclass(frozen=True)
class PromptConfig:
    forced_commitment: str
    decision_template: str


@dataclass(frozen=True)
class GraphTaskConfig:
    task_name: str
    note_path: str
    people_endpoint: str
    places_endpoint: str
    goal: str
    system_prompt: str


@dataclass(frozen=True)
class ImageTaskConfig:
    task_name: str
    image_url_template: str
    image_suffix: str
    work_dir: str
    goal: str
    system_prompt: str
    describe_prompt: str
    check_prompt: str
    # Empty string disables the translation step before CHECK submission.
    translate_prompt: str


@dataclass(frozen=True)
class CrawlTaskConfig:
    task_name: str
    questions_path: str
    start_url: str
    max_page_chars: int
    goal: str
    system_prompt: str


@dataclass(frozen=True)
class TasksConfig:
    graph: GraphTaskConfig
    images: ImageTaskConfig
    crawl: CrawlTaskConfig


@dataclass(frozen=True)
class AppConfig:
    loop: LoopConfig
    http: HTTPConfig
    media: MediaConfig
    verifier: VerifierConfig
    prompts: PromptConfig
    tasks: TasksConfig


def default_config_path() -> Path:
    return Path(os.getenv("SLEUTH_CONFIG_PATH", "config/default.toml")).expanduser().resolve()


def load_app_config(path: Path | None = None) -> AppConfig:
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    try:
        import tomllib  # py3.11+
    except Exception as e:
        raise ConfigError("tomllib is required (Python 3.11+).") from e

    try:
        raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e

    loop = raw.get("loop", {})
    http = raw.get("http", {})
    media = raw.get("media", {})
    verifier = raw.get("verifier", {})
    prompts = raw.get("prompts", {})
    tasks = raw.get("tasks", {})
    graph = tasks.get("graph", {})
    images = tasks.get("images", {})
    crawl = tasks.get("crawl", {})

    # Common case: config lives in `<repo>/config/default.toml`; data dirs are repo-relative.
    repo_dir = cfg_path.parent.parent

    return AppConfig(
        loop=LoopConfig(
            max_iterations=_as_positive_int(loop.get("max_iterations"), key="loop.max_iterations"),
            forced_commitment_every=_as_positive_int(
                loop.get("forced_commitment_every"), key="loop.forced_commitment_every"
            ),
            history_window=_as_positive_int(loop.get("history_window"), key="loop.history_window"),
            temperature=_as_float(loop.get("temperature"), key="loop.temperature"),
        ),
        http=HTTPConfig(timeout_s=_as_float(http.get("timeout_s"), key="http.timeout_s")),
        media=MediaConfig(
            max_workers=_as_positive_int(media.get("max_workers"), key="media.max_workers"),
            cache_dir=_resolve_dir(media.get("cache_dir"), key="media.cache_dir", repo_dir=repo_dir),
            enrich_pages=_as_bool(media.get("enrich_pages"), key="media.enrich_pages"),
            image_prompt=_as_str(media.get("image_prompt"), key="media.image_prompt"),
        ),
        verifier=VerifierConfig(
            report_path=_as_str(verifier.get("report_path"), key="verifier.report_path"),
        ),
        prompts=PromptConfig(
            forced_commitment=_as_str(prompts.get("forced_commitment"), key="prompts.forced_commitment"),
            decision_template=_as_str(prompts.get("decision_template"), key="prompts.decision_template"),
        ),
        tasks=TasksConfig(
            graph=GraphTaskConfig(
                task_name=_as_str(graph.get("task_name"), key="tasks.graph.task_name"),
                note_path=_as_str(graph.get("note_path"), key="tasks.graph.note_path"),
                people_endpoint=_as_str(graph.get("people_endpoint"), key="tasks.graph.people_endpoint"),
                places_endpoint=_as_str(graph.get("places_endpoint"), key="tasks.graph.places_endpoint"),
                goal=_as_str(graph.get("goal"), key="tasks.graph.goal"),
                system_prompt=_as_str(graph.get("system_prompt"), key="tasks.graph.system_prompt"),
            ),
            images=ImageTaskConfig(
                task_name=_as_str(images.get("task_name"), key="tasks.images.task_name"),
                image_url_template=_as_str(
                    images.get("image_url_template"), key="tasks.images.image_url_template"
                ),
                image_suffix=_as_str(images.get("image_suffix"), key="tasks.images.image_suffix"),
                work_dir=_resolve_dir(images.get("work_dir"), key="tasks.images.work_dir", repo_dir=repo_dir),
                goal=_as_str(images.get("goal"), key="tasks.images.goal"),
                system_prompt=_as_str(images.get("system_prompt"), key="tasks.images.system_prompt"),
                describe_prompt=_as_str(images.get("describe_prompt"), key="tasks.images.describe_prompt"),
                check_prompt=_as_str(images.get("check_prompt"), key="tasks.images.check_prompt"),
                translate_prompt=str(images.get("translate_prompt") or ""),
            ),
            crawl=CrawlTaskConfig(
                task_name=_as_str(crawl.get("task_name"), key="tasks.crawl.task_name"),
                questions_path=_as_str(crawl.get("questions_path"), key="tasks.crawl.questions_path"),
                start_url=os.getenv("SLEUTH_CRAWL_START_URL") or str(crawl.get("start_url") or ""),
                max_page_chars=_as_positive_int(crawl.get("max_page_chars"), key="tasks.crawl.max_page_chars"),
                goal=_as_str(crawl.get("goal"), key="tasks.crawl.goal"),
                system_prompt=_as_str(crawl.get("system_prompt"), key="tasks.crawl.system_prompt"),
            ),
        ),
    )
