"""Styling for the interactive kube context prompt."""

from questionary import Style

# ANSI 256 colors for broad terminal compatibility
PROMPT_STYLE = Style(
    [
        ("qmark", "fg:#5fafff bold"),
        ("question", "bold"),
        ("answer", "fg:#87d787 bold"),
        ("pointer", "fg:#87d787 bold"),
        ("highlighted", "fg:#1c1c1c bg:#87d787 bold"),
        ("instruction", "fg:#6c6c6c italic"),
        ("text", ""),
    ]
)

POINTER = "❯ "
QMARK = "? "
