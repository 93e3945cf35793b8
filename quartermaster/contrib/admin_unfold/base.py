"""
Base classes for Unfold admin in Quartermaster.

Provides BaseModelAdmin and BaseTabularInline that shrink textarea widgets
(TextField, JSONField) so notes and shipment batches don't dominate forms.
"""

from django import forms
from django.contrib.admin.widgets import AdminTextareaWidget
from unfold.admin import ModelAdmin, TabularInline
from unfold.widgets import UnfoldAdminTextareaWidget

TEXTAREA_WIDGETS = (forms.Textarea, AdminTextareaWidget, UnfoldAdminTextareaWidget)


def format_pence(value) -> str:
    """Format pence as pounds (e.g., 1250 -> "£12.50")."""
    if value is None:
        return "-"
    return f"£{value / 100:.2f}"


def _halve_rows(widget):
    try:
        widget.attrs["rows"] = max(1, int(widget.attrs.get("rows", 4)) // 2)
    except (ValueError, TypeError):
        widget.attrs["rows"] = 2


def compact_textareas(fields, max_width=None):
    """Halve textarea height; optionally cap its width."""
    for field in fields.values():
        widget = field.widget
        if not isinstance(widget, TEXTAREA_WIDGETS):
            continue
        _halve_rows(widget)
        if max_width:
            style = [
                s for s in widget.attrs.get("style", "").split(";")
                if s.strip() and "width" not in s.lower()
            ]
            style.append(f"width: 100%; max-width: {max_width}")
            widget.attrs["style"] = "; ".join(s.strip() for s in style)


class BaseTabularInline(TabularInline):
    """TabularInline with compact textareas."""

    def get_formset(self, request, obj=None, **kwargs):
        formset = super().get_formset(request, obj, **kwargs)
        compact_textareas(formset.form.base_fields)
        return formset


class BaseModelAdmin(ModelAdmin):
    """ModelAdmin with compact textareas aligned to the other fields (42rem)."""

    def get_form(self, request, obj=None, **kwargs):
        form = super().get_form(request, obj, **kwargs)
        compact_textareas(form.base_fields, max_width="42rem")
        return form
