# config.py
import os

from dotenv import load_dotenv

load_dotenv()

# Base de datos (PostgreSQL, MySQL o SQLite)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pogil.db")

# Credenciales de la cuenta de servicio para la API de Google Docs
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")

# Ventana de presencia y periodo de rotación del estudiante activo
HEARTBEAT_WINDOW_SECONDS = int(os.getenv("HEARTBEAT_WINDOW_SECONDS", "60"))
ROTATION_SECONDS = int(os.getenv("ROTATION_SECONDS", "60"))

GROUP_SIZE = int(os.getenv("GROUP_SIZE", "4"))
MIN_GROUP_STUDENTS = int(os.getenv("MIN_GROUP_STUDENTS", "4"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))
