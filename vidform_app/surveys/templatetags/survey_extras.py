from django import template
from django.utils.safestring import mark_safe

from vidform_app.surveys import engine

register = template.Library()


@register.filter(name="formatted")
def formatted(text):
    """Render question descriptions: **bold**, *italic* and line breaks.

    Input is escaped before markup is applied, so the result is safe.
    Usage: {{ question.description|formatted }}
    """
    return mark_safe(engine.render_formatted_text(text))


@register.filter(name="answer_text")
def answer_text(value):
    return engine.format_answer(value)


@register.filter(name="get_item")
def get_item(mapping, key):
    if hasattr(mapping, "get"):
        return mapping.get(key)
    return None


@register.filter(name="indent_rem")
def indent_rem(depth):
    """Left indent for a conditional question, 1.5rem per level."""
    try:
        return f"{int(depth) * 1.5:g}rem"
    except (TypeError, ValueError):
        return "0rem"
