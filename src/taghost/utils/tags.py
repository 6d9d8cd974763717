"""Tag string helpers.

Tags arrive as "name:value" strings; a tag without a value is stored with
an empty value.
"""


def split_tag(tag: str) -> tuple[str, str]:
    """Split "name:value" into (name, value); value is "" when absent.

    Example:
        >>> split_tag("role:web")
        ('role', 'web')
        >>> split_tag("maintenance")
        ('maintenance', '')
    """
    tag_name, _, tag_value = tag.partition(":")
    return tag_name, tag_value


def display_tag(tag_name: str, tag_value: str | None) -> str | None:
    """Value shown for a tag: its name when valueless, None when absent."""
    if tag_value is None:
        return None
    if tag_value == "":
        return tag_name
    return tag_value
