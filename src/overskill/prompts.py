# overskill: Load prompt templates from overskill.resources via importlib.resources, optionally formatting them with dynamic values.

from importlib import resources


def get_prompt(name: str, **kwargs) -> str:
    """
    Load a text prompt from the overskill.resources package.

    If kwargs are provided, apply str.format(**kwargs) to the content so prompts can
    contain placeholders (e.g., {max_turns}). Without kwargs the raw text is returned
    untouched so prompts showing JSON examples keep their braces.
    """
    data = resources.files("overskill.resources").joinpath(name).read_text(encoding="utf-8")
    if kwargs:
        return data.format(**kwargs)
    return data
