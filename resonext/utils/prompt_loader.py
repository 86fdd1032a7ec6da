"""
Jinja2-based prompt template loading and rendering.

Every Gateway prompt lives as a template under resonext/prompts/. Templates
support the usual Jinja2 features (variables, conditionals, loops, includes).
Student profiles are rendered through the shared profile/_student.j2 partial.

Usage:
    from resonext.utils.prompt_loader import render_prompt

    prompt = render_prompt(
        "discovery/professors.j2",
        profile=profile,
        university="MIT",
        exclude=["Jane Doe"],
    )
"""

from pathlib import Path
from typing import Any, Optional

import structlog
from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    Undefined,
    UndefinedError,
)

logger = structlog.get_logger(__name__)


class PromptLoader:
    """
    Manages loading and rendering of Jinja2 prompt templates.

    Templates are loaded from the prompts/ directory inside the package.
    """

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        strict_undefined: bool = False,
    ) -> None:
        """
        Initialize PromptLoader with Jinja2 environment.

        Args:
            template_dir: Base directory for templates (defaults to resonext/prompts/)
            strict_undefined: If True, raise error for undefined variables (default: False)
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "prompts"

        self.template_dir = template_dir
        self.strict_undefined = strict_undefined

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,  # Prompts are text, not HTML
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined if strict_undefined else Undefined,
        )

        self.env.filters["or_na"] = self._or_na_filter

        logger.debug(
            "PromptLoader initialized",
            template_dir=str(self.template_dir),
            strict_undefined=strict_undefined,
        )

    def render(
        self,
        template_name: str,
        correlation_id: Optional[str] = None,
        **variables: Any,
    ) -> str:
        """
        Render a template with provided variables.

        Args:
            template_name: Path relative to prompts/ (e.g., "email/analysis.j2")
            correlation_id: Optional correlation ID for logging
            **variables: Template variables as keyword arguments

        Returns:
            Rendered prompt string

        Raises:
            TemplateNotFound: If template file doesn't exist
            TemplateSyntaxError: If template has syntax errors
            UndefinedError: If strict_undefined=True and variable is missing
        """
        log = logger.bind(
            template_name=template_name,
            correlation_id=correlation_id,
        )

        try:
            template = self.env.get_template(template_name)
            rendered = template.render(**variables)
            log.debug(
                "Template rendered",
                rendered_length=len(rendered),
                variables_provided=list(variables.keys()),
            )
            return rendered

        except TemplateNotFound as e:
            log.error(
                "Template not found",
                template_dir=str(self.template_dir),
                error=str(e),
            )
            raise

        except TemplateSyntaxError as e:
            log.error("Template syntax error", error=str(e), lineno=e.lineno)
            raise

        except UndefinedError as e:
            log.error(
                "Undefined variable in template",
                error=str(e),
                variables_provided=list(variables.keys()),
            )
            raise

    def get_system_prompt(
        self,
        prompt_type: str,
        correlation_id: Optional[str] = None,
        **variables: Any,
    ) -> str:
        """
        Load and render a system prompt template from the base/ directory.

        Args:
            prompt_type: Type of system prompt (e.g., "research_assistant", "editor")
            correlation_id: Optional correlation ID for logging
            **variables: Template variables as keyword arguments

        Returns:
            Rendered system prompt string
        """
        template_name = f"base/{prompt_type}.j2"
        return self.render(template_name, correlation_id=correlation_id, **variables)

    @staticmethod
    def _or_na_filter(value: Any, fallback: str = "N/A") -> Any:
        """Jinja2 filter: replace empty values with a fallback string."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return fallback
        return value


_default_loader: Optional[PromptLoader] = None


def get_default_loader() -> PromptLoader:
    """
    Get or create the default PromptLoader instance.

    Returns:
        Global PromptLoader instance
    """
    global _default_loader
    if _default_loader is None:
        _default_loader = PromptLoader()
    return _default_loader


def render_prompt(
    template_name: str,
    correlation_id: Optional[str] = None,
    **variables: Any,
) -> str:
    """
    Convenience function to render a prompt template with the default loader.

    Args:
        template_name: Path relative to prompts/ (e.g., "sop/draft.j2")
        correlation_id: Optional correlation ID for logging
        **variables: Template variables as keyword arguments

    Returns:
        Rendered prompt string
    """
    loader = get_default_loader()
    return loader.render(template_name, correlation_id=correlation_id, **variables)
