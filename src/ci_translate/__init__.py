"""ci-translate: deterministic translation of CI pipeline definitions.

This package provides tools for:
- Parsing GitHub Actions, CircleCI, Bitbucket Pipelines, GitLab CI and
  Jenkins declarative pipelines into a vendor-neutral IR
- Translating the IR with data-driven rules
- Emitting Buildkite pipelines with structured degradation comments

Quick Start:
    >>> from ci_translate import translate
    >>> result = translate(open(".gitlab-ci.yml").read(), "gitlab")
    >>> print(result.text)
    >>> for diagnostic in result.diagnostics:
    ...     print(diagnostic)

Modules:
    models: Pydantic models for the YAML source dialects
    parsers: Source dialect to IR lowering
    ir: Intermediate Representation data structures
    rules: Rule registry and target rule data
    engine: Rule application
    emitters: IR to target text
    diagnostics: Diagnostics and the error taxonomy
    cli: Command-line interface helpers
"""

from ci_translate.translator import TranslationResult, translate

__version__ = "0.1.0"

__all__ = ["TranslationResult", "__version__", "translate"]
