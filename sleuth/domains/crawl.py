from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

from sleuth.loop.actions import (
    AnswerAction,
    Decision,
    DecisionSchema,
    FetchAction,
    params_object,
    require_str,
)
from sleuth.loop.dispatcher import Handler, Toolset
from sleuth.loop.errors import InvalidDecisionError
from sleuth.loop.knowledge import DispatchOutcome, KnowledgeState, ToolResult
from sleuth.loop.termination import TerminationDetector
from sleuth.tools.http import get_text
from sleuth.tools.media import MediaAnalyzer, enrich_page
from sleuth.utils.json_extract import parse_json_object
from sleuth.utils.template import render_template


def canonical_url(url: str, *, base: str = "") -> str:
    resolved = urljoin(base, url.strip()) if base else url.strip()
    return urldefrag(resolved)[0]


def extract_links(html: str, *, base_url: str) -> list[str]:
    """Absolute http(s) targets of every `<a href>`, in page order, without duplicates or fragments."""
    soup = BeautifulSoup(html, "html.parser")
    out: list[str] = []
    for a in soup.select("a[href]"):
        href = str(a.get("href") or "").strip()
        if not href or href.startswith(("mailto:", "javascript:", "tel:")):
            continue
        url = canonical_url(href, base=base_url)
        if url.startswith(("http://", "https://")) and url not in out:
            out.append(url)
    return out


def page_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text("\n", strip=True)


def canonical_answers(answers: dict[str, str]) -> str:
    return json.dumps(answers, ensure_ascii=False, sort_keys=True)


@dataclass
class PageRecord:
    url: str
    outbound_links: list[str] = field(default_factory=list)
    visited: bool = False


class CrawlKnowledge(KnowledgeState):
    title = "crawl_state"

    def __init__(
        self,
        *,
        questions: dict[str, str],
        start_url: str,
        max_page_chars: int = 20000,
    ) -> None:
        super().__init__()
        self.questions = dict(questions)
        self.start_url = start_url
        self.max_page_chars = int(max_page_chars)
        self.pages: dict[str, PageRecord] = {}
        self.last_url = ""
        self.last_content = ""
        self.feedback = ""
        self.possible_answers: dict[str, str] = {}
        if start_url:
            self.pages[start_url] = PageRecord(url=start_url)

    def is_visited(self, url: str) -> bool:
        page = self.pages.get(url)
        return bool(page and page.visited)

    def frontier(self) -> list[str]:
        return [u for u, p in self.pages.items() if not p.visited]

    def _apply(self, decision: Decision, outcome: DispatchOutcome) -> None:
        data = outcome.result.data or {}
        action = decision.action
        if decision.candidate_answer:
            self.possible_answers = json.loads(decision.candidate_answer)
        if isinstance(action, FetchAction):
            url = data["url"]
            page = self.pages.setdefault(url, PageRecord(url=url))
            if page.visited:
                return
            page.visited = True
            page.outbound_links = list(data.get("links") or [])
            for link in page.outbound_links:
                self.pages.setdefault(link, PageRecord(url=link))
            self.last_url = url
            self.last_content = data.get("content") or ""
        elif isinstance(action, AnswerAction):
            if not outcome.success:
                self._reject(action.candidate)
                self.feedback = data.get("message") or ""

    def _sections(self) -> list[tuple[str, list[str]]]:
        page_lines: list[str] = []
        for url, page in self.pages.items():
            page_lines.append(f"- {url} [{'visited' if page.visited else 'unvisited'}]")
            for link in page.outbound_links:
                page_lines.append(f"    -> {link}")

        content_lines: list[str] = []
        if self.last_url:
            content = self.last_content
            if len(content) > self.max_page_chars:
                content = content[: self.max_page_chars] + "\n[truncated]"
            content_lines = [f"url: {self.last_url}", *content.splitlines()]

        return [
            ("questions", [f"- {k}: {v}" for k, v in sorted(self.questions.items())]),
            ("start_url", [self.start_url] if self.start_url else []),
            ("web_page_map", page_lines),
            ("unvisited_pages", [f"- {u}" for u in self.frontier()]),
            ("last_fetched_page", content_lines),
            ("possible_answers", [f"- {k}: {v}" for k, v in sorted(self.possible_answers.items())]),
            ("last_verifier_feedback", [self.feedback] if self.feedback else []),
        ]


def _parse_fetch(obj: dict[str, Any]) -> FetchAction:
    params = params_object(obj, tag="FETCH")
    return FetchAction(url=require_str(params, "url", tag="FETCH"))


def _possible_answers(value: Any) -> str | None:
    """`{"01": {"answer": ..., "reasoning": ...}}` (or plain strings) as canonical answers."""
    if not isinstance(value, dict):
        return None
    answers: dict[str, str] = {}
    for k, v in value.items():
        if isinstance(v, dict):
            v = v.get("answer")
        if isinstance(v, (str, int, float)) and not isinstance(v, bool) and str(v).strip():
            answers[str(k)] = str(v).strip()
    return canonical_answers(answers) if answers else None


def _parse_answer(obj: dict[str, Any]) -> AnswerAction:
    params = params_object(obj, tag="ANSWER")
    raw = params.get("answer")
    if isinstance(raw, list):
        raw = {f"{i:02d}": v for i, v in enumerate(raw, start=1)}
    if not isinstance(raw, dict) or not raw:
        raise InvalidDecisionError("Invalid ANSWER: 'answer' must be a non-empty object keyed by question id")
    answers = {str(k): str(v).strip() for k, v in raw.items()}
    return AnswerAction(candidate=canonical_answers(answers), payload=answers)


CRAWL_SCHEMA = DecisionSchema(
    tag_field="tool",
    parsers={"fetch": _parse_fetch, "answer": _parse_answer},
    rationale_fields=("reasoning", "execution_plan"),
    candidate_field="possible_answers",
    candidate_parser=_possible_answers,
)


class CrawlToolset(Toolset):
    """Question answering over one website: fetch pages, then submit all answers at once."""

    name = "crawl"
    schema = CRAWL_SCHEMA

    def __init__(
        self,
        *,
        verifier: Any,
        task_name: str,
        questions_path: str,
        start_url: str,
        max_page_chars: int = 20000,
        goal: str = "",
        system_prompt: str = "",
        analyzer: MediaAnalyzer | None = None,
        max_workers: int = 8,
        timeout_s: float = 30.0,
        detector: TerminationDetector | None = None,
    ) -> None:
        super().__init__(detector=detector)
        self.verifier = verifier
        self.task_name = task_name
        self.questions_path = questions_path
        self.start_url = canonical_url(start_url) if start_url else ""
        self.max_page_chars = int(max_page_chars)
        self._goal = goal
        self.system_prompt = system_prompt
        self.analyzer = analyzer
        self.max_workers = int(max_workers)
        self.timeout_s = float(timeout_s)

    def goal(self) -> str:
        return render_template(self._goal, {"start_url": self.start_url})

    def bootstrap(self) -> CrawlKnowledge:
        obj = parse_json_object(self.verifier.get_text(self.questions_path))
        questions = {str(k): str(v) for k, v in obj.items()}
        return CrawlKnowledge(
            questions=questions,
            start_url=self.start_url,
            max_page_chars=self.max_page_chars,
        )

    def handlers(self) -> dict[type, Handler]:
        return {FetchAction: self._fetch, AnswerAction: self._answer}

    def _fetch(self, action: FetchAction, decision: Decision, state: CrawlKnowledge) -> ToolResult:
        url = canonical_url(action.url, base=self.start_url)
        if state.is_visited(url):
            return ToolResult(narrative=f"Skipped FETCH {url}: already visited", skipped=True)

        html = get_text(url, timeout_s=self.timeout_s)
        links = extract_links(html, base_url=url)
        narrative = f"FETCH {url}: {len(links)} links"
        if self.analyzer is not None:
            page = enrich_page(html, base_url=url, analyzer=self.analyzer, max_workers=self.max_workers)
            html = page.html
            narrative += f", {len(page.media)} media described"
            if page.failed:
                narrative += f", {len(page.failed)} media failed"
        return ToolResult(
            narrative=narrative,
            raw="",
            data={"url": url, "links": links, "content": page_text(html)},
        )

    def _answer(self, action: AnswerAction, decision: Decision, state: CrawlKnowledge) -> ToolResult:
        if state.is_rejected(action.candidate):
            return ToolResult(narrative=f"Skipped ANSWER {action.candidate}: already rejected", skipped=True)
        res = self.verifier.report(self.task_name, action.submission())
        return ToolResult(
            narrative=f"ANSWER {action.candidate}: {res.message}",
            raw=res.raw,
            data={"message": res.message},
            answer=action.candidate,
        )
