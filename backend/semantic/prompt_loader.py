"""Load semantic-match prompt templates from .txt files with {variable} substitution."""
import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from backend.config.logging_config import get_logger

logger = get_logger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
DEFAULT_CLUSTER_PROMPT = "DEFAULT"


class PromptLoader:
    """
    Load prompts from the bundled prompts directory.
    Supports {variable_name} substitution.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        self.prompts_dir = prompts_dir or PROMPTS_DIR
        if not self.prompts_dir.exists():
            raise FileNotFoundError(f"Prompts directory not found: {self.prompts_dir}")

    @lru_cache(maxsize=64)
    def _read(self, prompt_path: str) -> str:
        full_path = (self.prompts_dir / prompt_path).resolve()
        try:
            full_path.relative_to(self.prompts_dir.resolve())
        except ValueError:
            raise ValueError(f"Path traversal attempt blocked: {prompt_path}")
        if not full_path.exists():
            raise FileNotFoundError(f"Prompt file not found: {full_path}")
        return full_path.read_text(encoding="utf-8")

    def load(self, prompt_path: str, variables: Optional[Dict[str, Any]] = None) -> str:
        """
        Load a prompt and substitute variables.

        Args:
            prompt_path: Relative path within the prompts directory
            variables: Values for {name} placeholders; lists and dicts are JSON encoded

        Returns:
            Prompt text with variables substituted
        """
        result = self._read(prompt_path)
        for key, value in (variables or {}).items():
            if isinstance(value, (dict, list)):
                value_str = json.dumps(value, default=str)
            else:
                value_str = str(value)
            result = result.replace("{" + key + "}", value_str)

        remaining = re.findall(r"\{(\w+)\}", result)
        if remaining:
            logger.warning("Unsubstituted variables in prompt", prompt_path=prompt_path, variables=remaining)
        return result

    def system_prompt_for(self, cluster_code: Optional[str]) -> str:
        """Cluster-specific system prompt, falling back to the default one."""
        name = f"semantic/system_{(cluster_code or DEFAULT_CLUSTER_PROMPT).upper()}.txt"
        try:
            return self.load(name)
        except FileNotFoundError:
            return self.load(f"semantic/system_{DEFAULT_CLUSTER_PROMPT}.txt")


_prompt_loader: Optional[PromptLoader] = None


def get_prompt_loader() -> PromptLoader:
    """Get or create the global prompt loader instance."""
    global _prompt_loader
    if _prompt_loader is None:
        _prompt_loader = PromptLoader()
    return _prompt_loader
