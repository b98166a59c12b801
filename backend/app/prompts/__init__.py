from .compiler import (
    STAGE_AGGRESSIVE,
    STAGE_NONE,
    STAGE_TRUNCATED,
    STAGE_WHITESPACE,
    CompiledPrompt,
    IdentityFacts,
    PromptCompiler,
    PromptSection,
)

__all__ = [
    "STAGE_AGGRESSIVE",
    "STAGE_NONE",
    "STAGE_TRUNCATED",
    "STAGE_WHITESPACE",
    "CompiledPrompt",
    "IdentityFacts",
    "PromptCompiler",
    "PromptSection",
]
