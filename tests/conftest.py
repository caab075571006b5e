"""Shared test fixtures for mcpeverything tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mcpeverything.config import Config
from mcpeverything.github_analysis import (
    FileTreeNode,
    ReadmeAnalysis,
    RepositoryAnalysis,
    RepositoryFeatures,
    RepositoryMetadata,
    SourceFile,
    TechnologyStack,
)
from mcpeverything.llm_client import MockLLMClient
from mcpeverything.prompts import PromptLibrary
from mcpeverything.tools import ImplementationHints, McpTool, ToolQuality

SAMPLE_README = """# Hello World

A tiny greeting library.

## Features

- Greets people by name
- Supports several languages

## Installation

```
pip install hello-world
```

## Usage

```
hello --name Ada
```
"""


@pytest.fixture
def sample_analysis() -> RepositoryAnalysis:
    """A small analyzed Python repository."""
    return RepositoryAnalysis(
        metadata=RepositoryMetadata(
            name="hello-world",
            full_name="octocat/hello-world",
            description="A tiny greeting library",
            language="Python",
            topics=["greeting"],
        ),
        file_tree=[
            FileTreeNode(path="main.py", type="file", size=120, extension=".py"),
            FileTreeNode(path="README.md", type="file", size=300, extension=".md"),
        ],
        tech_stack=TechnologyStack(languages=["Python"], confidence=0.7),
        source_files=[
            SourceFile(
                path="main.py",
                content="import argparse\n\n\ndef greet(name):\n    return f'Hello, {name}!'\n",
                size=120,
                type="main",
                language="Python",
            ),
        ],
        features=RepositoryFeatures(has_cli=True, features=["Command Line Interface"]),
        readme=ReadmeAnalysis(
            content=SAMPLE_README,
            extracted_features=["Greets people by name", "Supports several languages"],
        ),
    )


@pytest.fixture
def sample_tool() -> McpTool:
    """A fully populated tool."""
    return McpTool(
        name="greet_user",
        description="Return a greeting for a person",
        category="utility",
        input_schema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Person to greet"},
                "language": {"type": "string", "enum": ["en", "fr"], "default": "en"},
            },
            "required": ["name"],
        },
        implementation_hints=ImplementationHints(
            primary_action="Format a greeting",
            required_data=["name"],
            complexity="simple",
            output_format="text",
        ),
        quality=ToolQuality(0.9, 0.8, 0.9, 0.7, 0.85, "Useful"),
    )


@pytest.fixture
def mock_llm() -> MockLLMClient:
    """Mock model client with canned stage-aware responses."""
    return MockLLMClient()


@pytest.fixture
def prompts() -> PromptLibrary:
    """The built-in prompt library."""
    library = PromptLibrary()
    library.load()
    return library


@pytest.fixture
def mock_config(tmp_path: Path) -> Config:
    """Config in mock mode writing everything under tmp_path."""
    return Config(
        mock_mode=True,
        config_dir=tmp_path / "config",
        output_dir=tmp_path / "generated",
        log_dir=tmp_path / "logs",
        usage_file=tmp_path / "usage.json",
    )


@pytest.fixture
def mock_analyzer(sample_analysis: RepositoryAnalysis) -> MagicMock:
    """Analyzer stand-in that returns the sample analysis."""
    analyzer = MagicMock()
    analyzer.analyze_repository.return_value = sample_analysis
    return analyzer
