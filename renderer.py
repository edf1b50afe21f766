# renderer.py
"""Convierte los bloques de ``sheet_parser`` en un fragmento HTML.

El texto, los encabezados, los nombres de sección y los enunciados ya son
marcado producido por ``format_markup`` a partir de la hoja del instructor y
se insertan tal cual, también en encabezados y secciones (el cliente los
muestra como texto y enseñaría las etiquetas). El código y las listas de
respuestas de ejemplo, retroalimentación y seguimiento se escapan.
"""
import logging
from html import escape

logger = logging.getLogger(__name__)

# Tipos que solo se muestran en la vista previa del instructor
HIDDEN_IN_RUN = ("sampleresponses", "feedbackprompt", "followupprompt")

_HEADER_TAGS = {"title": "h2", "section": "h4"}

_QUESTION_EXTRAS = (
    ("samples", "Sample Responses:"),
    ("feedback", "Feedback Prompts:"),
    ("followups", "Follow-up Prompts:"),
)


def _python_block(code, block_index, editable, is_active):
    editable_attr = ' contenteditable="true"' if editable and is_active else ""
    return (
        f'<pre class="python-block" data-block-index="{block_index}"{editable_attr}>'
        f"<code>{escape(code or '')}</code></pre>"
    )


def _render_question(block, index, mode, editable, is_active):
    parts = [
        f'<div class="mb-3" id="q-{escape(str(block["id"]))}">',
        f'<p><strong>{escape(block["label"])}</strong> <span>{block["prompt"]}</span></p>',
    ]
    for i, py in enumerate(block.get("pythonBlocks") or []):
        parts.append(_python_block(py.get("content", ""), f"{index}-{i}", editable, is_active))

    readonly = "" if editable else " readonly"
    parts.append(
        f'<textarea class="form-control mt-2" rows="{block.get("responseLines") or 1}" '
        f'name="response-{block.get("responseId", "")}"{readonly}></textarea>'
    )

    if mode == "preview":
        for field, heading in _QUESTION_EXTRAS:
            items = block.get(field) or []
            if items:
                lis = "".join(f"<li>{escape(item)}</li>" for item in items)
                parts.append(f'<div class="mt-2 text-muted small"><strong>{heading}</strong><ul>{lis}</ul></div>')

    parts.append("</div>")
    return "".join(parts)


def render_block(block, index, mode="preview", editable=False, is_active=False) -> str:
    block_type = block.get("type")

    if block_type in HIDDEN_IN_RUN and mode != "preview":
        return ""

    if block_type == "endGroup":
        return '<hr class="my-4">' if mode == "preview" else '<div data-type="endGroup"></div>'

    if block_type == "header":
        tag = _HEADER_TAGS.get(block.get("tag"), "p")
        return f'<{tag} class="my-3 font-bold">{block["content"]}</{tag}>'

    if block_type == "text":
        return f'<p class="my-2"><span>{block["content"]}</span></p>'

    if block_type == "list":
        tag = "ul" if block.get("listType") == "ul" else "ol"
        items = "".join(f"<li><span>{item}</span></li>" for item in block.get("items", []))
        return f'<{tag} class="my-2 list-disc list-inside">{items}</{tag}>'

    if block_type == "groupIntro":
        return (
            '<div class="my-4 border-t pt-4">'
            f'<h3 class="text-lg font-semibold"><span>{block["content"]}</span></h3></div>'
        )

    if block_type == "section":
        nested = render_blocks(block.get("content") or [], mode=mode, editable=editable, is_active=is_active)
        return f'<div class="my-4"><h4 class="font-semibold">{block["name"]}</h4>{nested}</div>'

    if block_type == "python":
        return _python_block(block.get("content", ""), index, editable, is_active)

    if block_type == "question":
        return _render_question(block, index, mode, editable, is_active)

    logger.warning("Unhandled block type: %s", block_type)
    return ""


def render_blocks(blocks, *, mode="preview", editable=False, is_active=False) -> str:
    """Renderiza la lista de bloques en orden; ``mode`` es "preview" o "run"."""
    return "\n".join(
        html
        for html in (
            render_block(block, index, mode=mode, editable=editable, is_active=is_active)
            for index, block in enumerate(blocks)
        )
        if html
    )
