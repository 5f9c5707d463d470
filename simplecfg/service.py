"""
simplecfg/service.py
════════════════════

HTTP RPC front of the analyzer.

    POST /analyze      { repo_root, file_paths, stage, categories }
                        ──▶ { notes: [Note], failures: [{path, message}] }
    GET  /categories    ──▶ { categories: ["SimpleCFG"], stage: "PRE_BUILD" }

Only the ``PRE_BUILD`` stage produces notes; a request for another stage,
or for categories that do not include ``SimpleCFG``, gets an empty
answer.  A file that cannot be analyzed does not fail the request: it is
listed under ``failures`` next to the notes of the other files.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from . import __version__
from .adapter import Note, to_notes
from .config import DEFAULT_CONFIG, AnalyzerConfig
from .errors import AnalyzerError
from .frontend import analyze

logger = logging.getLogger(__name__)

PRE_BUILD = "PRE_BUILD"


class AnalyzeRequest(BaseModel):
    repo_root: str = ""
    file_paths: List[str] = Field(default_factory=list)
    stage: str = PRE_BUILD
    categories: List[str] = Field(default_factory=list)


class FailureModel(BaseModel):
    path: str
    message: str


class AnalyzeResponse(BaseModel):
    notes: List[Note] = Field(default_factory=list)
    failures: List[FailureModel] = Field(default_factory=list)


class CategoriesResponse(BaseModel):
    categories: List[str]
    stage: str = PRE_BUILD


def wants_category(request: AnalyzeRequest, category: str) -> bool:
    """An empty category list selects every category."""
    return not request.categories or category in request.categories


def create_app(config: AnalyzerConfig = DEFAULT_CONFIG) -> FastAPI:
    app = FastAPI(
        title="SimpleCFG",
        description="Already-closed and nullable-dereference checks for Java sources.",
        version=__version__,
    )

    @app.get("/categories", response_model=CategoriesResponse)
    def categories() -> CategoriesResponse:
        return CategoriesResponse(categories=[config.category])

    @app.post("/analyze", response_model=AnalyzeResponse)
    def analyze_files(request: AnalyzeRequest) -> AnalyzeResponse:
        if request.stage != PRE_BUILD or not wants_category(request, config.category):
            logger.debug("ignoring request for stage %s, categories %s",
                         request.stage, request.categories)
            return AnalyzeResponse()

        repo_root = request.repo_root or None
        failures: List[FailureModel] = []
        try:
            findings = analyze(repo_root, request.file_paths, config)
        except AnalyzerError as exc:
            findings = exc.findings
            failures = [
                FailureModel(path=f.file_path, message=f.message)
                for f in exc.failures
            ]
        return AnalyzeResponse(notes=to_notes(findings, repo_root), failures=failures)

    return app


def serve(config: AnalyzerConfig = DEFAULT_CONFIG, app: Optional[FastAPI] = None) -> None:
    """Run the service in the foreground until interrupted."""
    logger.info("Starting SimpleCFG service at %d", config.port)
    uvicorn.run(app or create_app(config), host=config.host, port=config.port)
