# sheet_parser.py
"""Parser del marcado tipo LaTeX de las hojas de actividades POGIL.

Cada línea de la hoja se recorre una sola vez y se traduce a una lista plana
de bloques (diccionarios serializables a JSON) que el cliente o
``renderer.render_blocks`` convierten en la vista de la actividad.
"""
import logging
import re

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

_BOLD = re.compile(r"\\textbf\{(.+?)\}")
_ITALIC = re.compile(r"\\textit\{(.+?)\}")
_PLAIN = re.compile(r"\\text\{(.+?)\}")

_HEADER = re.compile(r"^\\(title|name)\{(.+?)\}$")
_SECTION = re.compile(r"^\\section\*?\{(.+?)\}$")
_BOLD_LINE = re.compile(r"^\\textbf\{(.+?)\}$")
_QUESTION_GROUP = re.compile(r"\\questiongroup\{(.+)\}")
_QUESTION = re.compile(r"\\question\{(.+)\}")
_TEXT_RESPONSE = re.compile(r"\\textresponse\{(\d+)\}")
_ITEM = re.compile(r"^\\item\s*")

# Directivas que añaden texto a la pregunta abierta
_QUESTION_LISTS = {
    "\\sampleresponses{": ("samples", re.compile(r"\\sampleresponses\{(.+)\}")),
    "\\feedbackprompt{": ("feedback", re.compile(r"\\feedbackprompt\{(.+)\}")),
    "\\followupprompt{": ("followups", re.compile(r"\\followupprompt\{(.+)\}")),
}

_LIST_BEGIN = {"\\begin{itemize}": "ul", "\\begin{enumerate}": "ol"}
_LIST_END = ("\\end{itemize}", "\\end{enumerate}")


def format_markup(text: str) -> str:
    """Traduce \\textbf, \\textit y \\text a HTML en línea."""
    text = _BOLD.sub(r"<strong>\1</strong>", text)
    text = _ITALIC.sub(r"<em>\1</em>", text)
    return _PLAIN.sub(r"\1", text)


def parse_sheet_to_blocks(lines) -> list[dict]:
    blocks = []
    group_number = 0
    question_letter = ord("a")
    response_id = 1

    current_question = None
    in_python = False
    text_run = []

    list_type = None
    list_items = []

    def flush_text():
        if text_run:
            blocks.append({"type": "text", "content": " ".join(text_run).strip()})
            text_run.clear()

    for line in lines:
        trimmed = line.strip()

        # --- Bloques de Python: las líneas se guardan tal cual ---
        if in_python:
            if trimmed == "\\endpython":
                if current_question["type"] == "python":
                    blocks.append({"type": "python", "content": "\n".join(current_question["lines"])})
                    current_question = None
                else:
                    pending = current_question["pythonBlocks"].pop()
                    current_question["pythonBlocks"].append(
                        {"type": "python", "content": "\n".join(pending["lines"])}
                    )
                in_python = False
            elif current_question["type"] == "python":
                current_question["lines"].append(line)
            else:
                current_question["pythonBlocks"][-1]["lines"].append(line)
            continue

        # --- Listas ---
        if trimmed in _LIST_BEGIN:
            flush_text()
            list_type = _LIST_BEGIN[trimmed]
            list_items = []
            continue

        if trimmed in _LIST_END:
            if list_type is None:
                # \end sin \begin: no se emite una lista vacía
                continue
            blocks.append({
                "type": "list",
                "listType": list_type,
                "items": [format_markup(item) for item in list_items],
            })
            list_type = None
            list_items = []
            continue

        if list_type is not None and trimmed.startswith("\\item"):
            list_items.append(_ITEM.sub("", trimmed))
            continue

        if trimmed == "\\python":
            flush_text()
            in_python = True
            if current_question is not None and current_question["type"] == "question":
                current_question.setdefault("pythonBlocks", []).append({"lines": []})
            else:
                current_question = {"type": "python", "lines": []}
            continue

        if trimmed == "\\endpython":
            # \endpython sin \python abierto
            continue

        # --- Encabezados (title, name) ---
        match = _HEADER.match(trimmed)
        if match:
            flush_text()
            blocks.append({"type": "header", "tag": match.group(1), "content": format_markup(match.group(2))})
            continue

        # --- Secciones (Learning Objectives, Content, Process...) ---
        match = _SECTION.match(trimmed)
        if match:
            flush_text()
            blocks.append({"type": "section", "name": format_markup(match.group(1)), "content": []})
            continue

        # --- Grupos de preguntas ---
        if trimmed.startswith("\\questiongroup{"):
            flush_text()
            group_number += 1
            question_letter = ord("a")
            match = _QUESTION_GROUP.search(trimmed)
            blocks.append({
                "type": "groupIntro",
                "groupId": group_number,
                "content": format_markup(match.group(1) if match else ""),
            })
            continue

        if trimmed == "\\endquestiongroup":
            flush_text()
            blocks.append({"type": "endGroup"})
            continue

        # --- Preguntas ---
        if trimmed.startswith("\\question{"):
            flush_text()
            match = _QUESTION.search(trimmed)
            letter = chr(question_letter)
            question_letter += 1
            current_question = {
                "type": "question",
                "id": letter,
                "label": f"{letter}.",
                "responseId": response_id,
                "prompt": format_markup(match.group(1) if match else ""),
                "responseLines": 1,
                "samples": [],
                "feedback": [],
                "followups": [],
            }
            response_id += 1
            continue

        if trimmed == "\\endquestion":
            if current_question is not None:
                blocks.append(current_question)
            else:
                logger.warning("\\endquestion found without matching \\question")
            current_question = None
            continue

        if trimmed.startswith("\\textresponse"):
            if current_question is None:
                logger.warning("\\textresponse found outside of a question block")
                continue
            match = _TEXT_RESPONSE.search(trimmed)
            if match:
                current_question["responseLines"] = int(match.group(1))
            continue

        directive = next((key for key in _QUESTION_LISTS if trimmed.startswith(key)), None)
        if directive is not None:
            field, pattern = _QUESTION_LISTS[directive]
            match = pattern.search(trimmed)
            if match and current_question is not None:
                current_question[field].append(format_markup(match.group(1)))
            continue

        # --- \textbf como línea completa ---
        match = _BOLD_LINE.match(trimmed)
        if match:
            flush_text()
            blocks.append({"type": "text", "content": f"<strong>{match.group(1)}</strong>"})
            continue

        # --- Texto normal ---
        text_run.append(format_markup(line))

    flush_text()
    return blocks


# Comandos que abren un bloque nuevo en el HTML exportado de Google Docs
_DOC_COMMANDS = (
    ("\\question{", "question"),
    ("\\textresponse", "textresponse"),
    ("\\python", "code"),
    ("\\feedbackprompt", "feedbackprompt"),
    ("\\roles", "roles"),
)
_DOC_QUESTION_ID = re.compile(r"\\question\{(.*?)\}")


def parse_google_doc_html(html: str) -> list[dict]:
    """Agrupa los párrafos de un Google Doc en bloques por comando."""
    soup = BeautifulSoup(html, "html.parser")
    body = soup.body or soup
    blocks = []
    current = None

    for element in body.find_all(recursive=False):
        text = element.get_text().strip()

        block_type = next((kind for prefix, kind in _DOC_COMMANDS if text.startswith(prefix)), None)
        if block_type is not None:
            if current:
                blocks.append(current)
            current = {"type": block_type, "content": ""}
            if block_type == "question":
                match = _DOC_QUESTION_ID.search(text)
                current = {
                    "type": "question",
                    "id": match.group(1) if match and match.group(1) else f"q{len(blocks) + 1}",
                    "content": "",
                }
            elif block_type == "code":
                current = {"type": "code", "language": "python", "content": ""}
        elif text.startswith("\\"):
            # Comandos desconocidos se ignoran
            continue
        else:
            if current is None:
                current = {"type": "info", "content": ""}
            current["content"] += str(element)

    if current:
        blocks.append(current)
    return blocks
