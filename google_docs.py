# google_docs.py
"""Descarga del contenido de las actividades desde Google Sheets y Google Docs."""
import csv
import io
import logging
import re

import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import GOOGLE_SERVICE_ACCOUNT_FILE, HTTP_TIMEOUT

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/documents.readonly"]
SHEET_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{doc_id}/export?format=csv"

_DOC_ID = re.compile(r"/d/([a-zA-Z0-9\-_]+)")


class SourceFetchError(Exception):
    """No se pudo obtener el contenido de la hoja o documento de Google."""


def extract_document_id(url):
    match = _DOC_ID.search(url or "")
    if not match:
        raise SourceFetchError(f"Invalid sheet_url: {url!r}")
    return match.group(1)


def fetch_sheet_lines(sheet_url, session=requests):
    """Devuelve la primera columna de cada fila de la hoja como lista de líneas."""
    doc_id = extract_document_id(sheet_url)
    try:
        response = session.get(SHEET_EXPORT_URL.format(doc_id=doc_id), timeout=HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise SourceFetchError(f"Error al descargar la hoja {doc_id}: {str(e)}") from e

    # La exportación llega como text/csv sin charset; requests asumiría ISO-8859-1
    try:
        text = response.content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise SourceFetchError(f"La hoja {doc_id} no está en UTF-8: {str(e)}") from e

    # Las celdas vacías se mantienen como líneas vacías
    reader = csv.reader(io.StringIO(text))
    return [row[0] if row else "" for row in reader]


def document_to_html(document):
    """Construye un HTML de párrafos a partir de la respuesta de documents.get."""
    paragraphs = []
    for element in document.get("body", {}).get("content", []):
        paragraph = element.get("paragraph")
        if not paragraph or not paragraph.get("elements"):
            continue
        text = "".join(
            (e.get("textRun") or {}).get("content", "") for e in paragraph["elements"]
        ).strip()
        if text:
            paragraphs.append(f"<p>{text}</p>")
    return "\n".join(paragraphs)


def docs_service():
    if not GOOGLE_SERVICE_ACCOUNT_FILE:
        raise SourceFetchError("GOOGLE_SERVICE_ACCOUNT_FILE is not configured")
    credentials = service_account.Credentials.from_service_account_file(
        GOOGLE_SERVICE_ACCOUNT_FILE, scopes=SCOPES
    )
    return build("docs", "v1", credentials=credentials, cache_discovery=False)


def fetch_document_html(doc_url, service=None):
    doc_id = extract_document_id(doc_url)
    try:
        # Credenciales ilegibles, refresco del token o errores de la API
        service = service or docs_service()
        document = service.documents().get(documentId=doc_id).execute()
    except (OSError, ValueError, GoogleAuthError, HttpError) as e:
        raise SourceFetchError(f"Error al obtener el documento {doc_id}: {str(e)}") from e

    logger.info("Documento %s descargado", doc_id)
    return document_to_html(document)
