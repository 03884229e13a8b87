"""Rough token accounting.

Counts are estimates (characters / 4), which is close enough across common
tokenizers for budgeting prompt sections and sizing intent nodes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional

CHARS_PER_TOKEN = 4

SKIP_BINARY = "binary"
SKIP_TOO_LARGE = "too_large"


def count_tokens(content: Optional[str]) -> int:
    if not content:
        return 0
    return math.ceil(len(content) / CHARS_PER_TOKEN)


def count_tokens_multiple(contents: Iterable[str]) -> int:
    return sum(count_tokens(c) for c in contents)


def estimate_tokens_from_size(size_bytes: int) -> int:
    """Token estimate for a blob when only its byte size is known."""
    return math.ceil(max(0, size_bytes) / CHARS_PER_TOKEN)


def count_lines(content: Optional[str]) -> int:
    if not content:
        return 0
    newlines = content.count("\n")
    return newlines if content.endswith("\n") else newlines + 1


def is_binary_content(content: str) -> bool:
    return "\0" in content


@dataclass
class TokenCountResult:
    tokens: int
    skipped: bool = False
    skip_reason: Optional[str] = None


def count_tokens_with_options(content: str, skip_binary_files: bool = True,
                              file_max_lines: int = 8000) -> TokenCountResult:
    if skip_binary_files and is_binary_content(content):
        return TokenCountResult(tokens=0, skipped=True, skip_reason=SKIP_BINARY)
    if file_max_lines > 0 and count_lines(content) > file_max_lines:
        return TokenCountResult(tokens=0, skipped=True, skip_reason=SKIP_TOO_LARGE)
    return TokenCountResult(tokens=count_tokens(content))


@dataclass
class TokenBudgetResult:
    node_tokens: int
    covered_code_tokens: int
    budget_percent: float
    exceeds_budget: bool


def _budget(node_tokens: int, covered_tokens: int, threshold_percent: float) -> TokenBudgetResult:
    percent = (node_tokens / covered_tokens) * 100 if covered_tokens > 0 else 0.0
    return TokenBudgetResult(
        node_tokens=node_tokens,
        covered_code_tokens=covered_tokens,
        budget_percent=percent,
        exceeds_budget=percent > threshold_percent,
    )


def calculate_token_budget(node_content: str, covered_contents: Iterable[str],
                           threshold_percent: float = 5.0) -> TokenBudgetResult:
    """Size of a node relative to the code it covers, as a percentage."""
    return _budget(count_tokens(node_content), count_tokens_multiple(covered_contents), threshold_percent)


def calculate_token_budget_from_sizes(node_size: int, covered_sizes: Iterable[int],
                                      threshold_percent: float = 5.0) -> TokenBudgetResult:
    return _budget(
        estimate_tokens_from_size(node_size),
        sum(estimate_tokens_from_size(s) for s in covered_sizes),
        threshold_percent,
    )


@dataclass
class CoveredFileTokens:
    path: str
    tokens: int
    skipped: bool = False
    skip_reason: Optional[str] = None


@dataclass
class CoveredCodeTokenResult:
    total_tokens: int = 0
    files_counted: int = 0
    files_skipped: int = 0
    file_details: List[CoveredFileTokens] = field(default_factory=list)


def calculate_covered_code_tokens(paths: Iterable[str], contents: Mapping[str, str],
                                  skip_binary_files: bool = True,
                                  file_max_lines: int = 8000) -> CoveredCodeTokenResult:
    """Sum tokens over the files a node covers; files without content are ignored."""
    result = CoveredCodeTokenResult()
    for path in paths:
        content = contents.get(path)
        if content is None:
            continue
        counted = count_tokens_with_options(content, skip_binary_files, file_max_lines)
        if counted.skipped:
            result.files_skipped += 1
        else:
            result.total_tokens += counted.tokens
            result.files_counted += 1
        result.file_details.append(CoveredFileTokens(
            path=path, tokens=counted.tokens, skipped=counted.skipped, skip_reason=counted.skip_reason,
        ))
    return result
